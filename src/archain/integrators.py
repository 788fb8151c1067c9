"""
Base integrators wrapped by the ODE iterators.

Symplectic integrators
    Compositions of `system.drift` and `system.kick` with fixed coefficient
    tables: second-order DKD leapfrog and the fourth- and sixth-order
    Yoshida-type schemes. `integrate(system, h)` performs one step.

Gauss-Radau
    A 15th-order implicit collocation integrator for the first-order ODE
    y' = f(y) on the flat state vector of a particle system. The derivative
    over one step is expanded as

        y'(τ) = y'(0) + b0 τ + b1 τ² + ... + b6 τ⁷,   τ ∈ [0, 1]

    and the b coefficients are found by predictor-corrector iteration at the
    seven Gauss-Radau nodes. The IAS15 iterator drives this integrator and
    uses b6 as its error estimate.
"""

import math

import numpy as np


class SymplecticIntegrator:
    """
    Drift/kick composition with a coefficient table.

    `_sequence` holds ('drift' | 'kick', coefficient) pairs; coefficients of
    each kind sum to one.
    """

    order = 2
    _sequence = (('drift', 0.5), ('kick', 1.0), ('drift', 0.5))

    def integrate(self, system, step_size: float):
        """Advance `system` by one step of length `step_size`."""
        for operation, coef in self._sequence:
            if operation == 'drift':
                system.drift(coef * step_size)
            else:
                system.kick(coef * step_size)

    def integrate_n_steps(self, system, macro_step: float, steps: int):
        """`steps` equal steps over `macro_step`; used by the Bulirsch-Stoer iterator."""
        h = macro_step / steps
        for _ in range(steps):
            self.integrate(system, h)

    def __repr__(self):
        return f"{type(self).__name__}(order={self.order})"


class LeapFrogDKD(SymplecticIntegrator):
    """Second-order drift-kick-drift leapfrog."""

    order = 2

    def integrate_n_steps(self, system, macro_step: float, steps: int):
        """
        `steps` leapfrog steps over `macro_step` with the inner half-drifts merged.

        Used by the Bulirsch-Stoer iterator.
        """
        h = macro_step / steps
        system.drift(0.5 * h)
        for _ in range(1, steps):
            system.kick(h)
            system.drift(h)
        system.kick(h)
        system.drift(0.5 * h)


class Symplectic4th(SymplecticIntegrator):
    """Fourth-order composition (Forest-Ruth / Yoshida)."""

    order = 4
    _sequence = (
        ('drift', 0.67560359597983),
        ('kick', 1.35120719195966),
        ('drift', -0.17560359597983),
        ('kick', -1.70241438391932),
        ('drift', -0.17560359597983),
        ('kick', 1.35120719195966),
        ('drift', 0.67560359597983),
    )


class Symplectic6th(SymplecticIntegrator):
    """Sixth-order Yoshida composition."""

    order = 6
    _sequence = (
        ('drift', 0.39225680523878),
        ('kick', 0.78451361047756),
        ('drift', 0.51004341191845848),
        ('kick', 0.23557321335935699),
        ('drift', -0.47105338540975655),
        ('kick', -1.1776799841788701),
        ('drift', 0.068753168252518093),
        ('kick', 1.3151863206839063),
        ('drift', 0.068753168252518093),
        ('kick', -1.1776799841788701),
        ('drift', -0.47105338540975655),
        ('kick', 0.23557321335935699),
        ('drift', 0.51004341191845848),
        ('kick', 0.78451361047756),
        ('drift', 0.39225680523878),
    )


SYMPLECTIC_INTEGRATORS = {
    'leapfrog': LeapFrogDKD,
    'symplectic4': Symplectic4th,
    'symplectic6': Symplectic6th,
}


def make_symplectic_integrator(name: str) -> SymplecticIntegrator:
    """
    Raises:
        ValueError: If the name is unknown
    """
    try:
        return SYMPLECTIC_INTEGRATORS[name.lower()]()
    except KeyError:
        raise ValueError(f"Unknown integrator '{name}', expected one of {sorted(SYMPLECTIC_INTEGRATORS)}")


# Gauss-Radau spacings (fractions of the step) of the seven collocation nodes
RADAU_NODES = np.array([
    0.0562625605369221464656521910318,
    0.180240691736892364987579942780,
    0.352624717113169637373907769648,
    0.547153626330555383001448554766,
    0.734210177215410531523210605558,
    0.885320946839095768090359771030,
    0.977520613561287501891174488626,
])


def _g_to_b_matrix(nodes: np.ndarray) -> np.ndarray:
    """
    c[j, k]: coefficient of τ^k in Π_{i<j} (τ - h_i).

    The derivative written in Newton form Σ_j g_j τ Π_{i<j}(τ - h_i) equals the
    power form Σ_k b_k τ^{k+1} with b_k = Σ_{j>=k} c[j, k] g_j.
    """
    n = len(nodes)
    c = np.zeros((n, n))
    for j in range(n):
        poly = np.poly1d([1.0])
        for i in range(j):
            poly = poly * np.poly1d([1.0, -nodes[i]])
        coeffs = poly.coeffs[::-1]
        c[j, :len(coeffs)] = coeffs
    return c


G_TO_B = _g_to_b_matrix(RADAU_NODES)
B_TO_G = np.linalg.inv(G_TO_B.T)


class GaussRadau:
    """
    15th-order Gauss-Radau collocation on a flat state vector.

    The integrator keeps its b and g tables between steps so that the next
    step starts from a prediction (`predict_new_b`) instead of from zero.
    """

    order = 15
    stages = len(RADAU_NODES)

    def __init__(self):
        self.b = np.zeros((self.stages, 0))
        self.g = np.zeros((self.stages, 0))
        self._old_b = np.zeros((self.stages, 0))
        self._predicted = False

    def check_variable_size(self, size: int):
        """(Re)allocate the coefficient tables for a state of length `size`."""
        if self.b.shape[1] != size:
            self.b = np.zeros((self.stages, size))
            self.g = np.zeros((self.stages, size))
            self._old_b = np.zeros((self.stages, size))
            self._predicted = False

    def integrate_at(self, y0: np.ndarray, dy0: np.ndarray, step_size: float, fraction: float) -> np.ndarray:
        """
        State at `fraction` of the step:
        y0 + h τ (y'0 + b0 τ/2 + b1 τ²/3 + ... + b6 τ⁷/8).
        """
        acc = np.zeros_like(y0)
        for k in range(self.stages - 1, -1, -1):
            acc = (acc + self.b[k] / (k + 2)) * fraction
        return y0 + step_size * fraction * (dy0 + acc)

    def integrate_to_end(self, y0: np.ndarray, dy0: np.ndarray, step_size: float) -> np.ndarray:
        return self.integrate_at(y0, dy0, step_size, 1.0)

    def calc_b_table(self, system, step_size: float, y0: np.ndarray, dy0: np.ndarray):
        """
        One predictor-corrector sweep over the seven nodes.

        At node n the state is predicted from the current b table, the
        derivative is evaluated there, g_n is refreshed from divided
        differences and the change is folded into b_0..b_n.
        """
        nodes = RADAU_NODES
        for n in range(self.stages):
            y = self.integrate_at(y0, dy0, step_size, nodes[n])
            system.read_from_scalar_array(y)
            dy = system.evaluate_general_derivative()

            tmp = (dy - dy0) / nodes[n]
            for j in range(n):
                tmp = (tmp - self.g[j]) / (nodes[n] - nodes[j])
            dg = tmp - self.g[n]
            self.g[n] = tmp
            for k in range(n + 1):
                self.b[k] += G_TO_B[n, k] * dg

    def predict_new_b(self, ratio: float):
        """
        Extrapolate the b table to a following step of `ratio` times the length.

        The correction measured on the last step (b - predicted b) is carried
        over on top of the new prediction.
        """
        stages = self.stages
        e = self.b - self._old_b if self._predicted else 0.0
        new_b = np.zeros_like(self.b)
        q = ratio
        for i in range(stages):
            for j in range(i, stages):
                new_b[i] += math.comb(j + 1, i + 1) * self.b[j]
            new_b[i] *= q ** (i + 1)
        self._old_b = new_b
        self.b = new_b + e
        self.g = B_TO_G @ self.b
        self._predicted = True

    def rescale_b(self, ratio: float):
        """Rescale b to a retried step of `ratio` times the length."""
        for i in range(self.stages):
            self.b[i] *= ratio ** (i + 1)
        self._old_b = self.b.copy()
        self.g = B_TO_G @ self.b

    def __repr__(self):
        return f"GaussRadau(order={self.order})"
