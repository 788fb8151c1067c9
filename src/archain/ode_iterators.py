"""
ODE iterators: one adaptive macro step of a particle system per `iterate` call.

Every iterator implements

    iterate(system, macro_step) -> next_step

which advances `system` in place by one accepted step and returns the step
size recommended for the next call. The length actually taken is stored in
`last_step` (adaptive iterators may shrink the requested step before
accepting it).

- ConstOdeIterator: one call of the wrapped integrator, no adaptivity.
- BisectionOdeIterator: Richardson-style step halving until two successive
  refinements agree to tolerance.
- BulirschStoer: modified-midpoint/leapfrog substeps with polynomial
  extrapolation to zero step and order selection by cost.
- IAS15: Gauss-Radau collocation with its b6 coefficient as error estimate.
"""

import numpy as np

from archain.error_checkers import IAS15Error, WorstOffender
from archain.integrators import GaussRadau, LeapFrogDKD
from archain.step_controllers import PIDController


class StepSizeError(RuntimeError):
    """An adaptive iterator could not find an acceptable step."""


class ConstOdeIterator:
    """
    Fixed-step driver.

    Args:
        integrator: Symplectic integrator; DKD leapfrog when None
    """

    def __init__(self, integrator=None):
        self.integrator = integrator if integrator is not None else LeapFrogDKD()
        self.last_step = 0.0

    def iterate(self, system, macro_step: float) -> float:
        self.integrator.integrate(system, macro_step)
        self.last_step = macro_step
        return macro_step

    def set_atol(self, atol: float):
        pass

    def set_rtol(self, rtol: float):
        pass


class BisectionOdeIterator:
    """
    Step halving with Richardson error estimate.

    The step is first taken in one piece, then repeatedly in 2, 4, 8, ...
    substeps from the same start state. Two successive results of an
    order-p integrator differ by about (2^p - 1) times the error of the finer
    one, so the scaled difference is compared against the tolerance. The
    finer result is accepted.

    Args:
        integrator: Symplectic integrator (order attribute required)
        err_checker: Error checker; worst-offender when None
        step_controller: Step controller; PID when None
        max_halvings: Number of halvings before giving up

    Raises (from iterate):
        StepSizeError: If the tolerance is not met after `max_halvings`
    """

    def __init__(self, integrator=None, err_checker=None, step_controller=None, max_halvings: int = 12):
        self.integrator = integrator if integrator is not None else LeapFrogDKD()
        self.err_checker = err_checker if err_checker is not None else WorstOffender()
        self.step_controller = step_controller if step_controller is not None else PIDController()
        self.max_halvings = max_halvings
        self.last_step = 0.0
        self.last_error = 0.0

    def set_atol(self, atol: float):
        self.err_checker.set_atol(atol)

    def set_rtol(self, rtol: float):
        self.err_checker.set_rtol(rtol)

    def iterate(self, system, macro_step: float) -> float:
        order = self.integrator.order
        error_scale = 1.0 / (2 ** order - 1)

        start = system.write_to_scalar_array()
        self.integrator.integrate(system, macro_step)
        coarse = system.write_to_scalar_array()

        h = macro_step
        steps = 1
        for _ in range(self.max_halvings):
            h *= 0.5
            steps *= 2
            system.read_from_scalar_array(start)
            for _ in range(steps):
                self.integrator.integrate(system, h)
            fine = system.write_to_scalar_array()

            error = self.err_checker.error(start, coarse, fine) * error_scale
            if error <= 1.0:
                self.last_step = macro_step
                self.last_error = error
                return self.step_controller.next_step_size(order, macro_step, error)
            coarse = fine

        system.read_from_scalar_array(start)
        raise StepSizeError(
            f"Bisection did not converge after {self.max_halvings} halvings "
            f"(macro step {macro_step:.6g}, time {system.time:.16g})"
        )


class BulirschStoer:
    """
    Bulirsch-Stoer extrapolation over leapfrog substeps.

    The macro step is integrated with n_k = 1, 2, 3, 5, 8, ... leapfrog
    substeps. The increments are extrapolated to zero substep length with
    Neville's scheme (the leapfrog error is even in h), and the difference of
    the two highest extrapolation orders serves as error estimate. The
    extrapolation depth ("rank") and the next step are chosen to minimise
    the force evaluations per unit step.

    Args:
        integrator: Symmetric symplectic integrator; DKD leapfrog when None
        err_checker: Error checker; worst-offender with atol 0, rtol 1e-14 when None
        step_controller: PID controller; safe guards (0.72, 0.95), limiter (0.02, 4) when None
        max_depth: Deepest extrapolation row
        max_try: Step retries before giving up
    """

    SEQUENCE = (1, 2, 3, 5, 8, 12, 17, 25, 36, 51, 73)
    DEC_FACTOR = 0.8
    INC_FACTOR = 0.9

    def __init__(self, integrator=None, err_checker=None, step_controller=None,
                 max_depth: int = 7, max_try: int = 100):
        if not 3 <= max_depth < len(self.SEQUENCE):
            raise ValueError(f"max_depth must be in [3, {len(self.SEQUENCE) - 1}], got {max_depth}")
        self.integrator = integrator if integrator is not None else LeapFrogDKD()
        self.err_checker = err_checker if err_checker is not None else WorstOffender(0.0, 1e-14)
        if step_controller is None:
            step_controller = PIDController()
            step_controller.set_safe_guards(0.72, 0.95)
            step_controller.set_limiter(0.02, 4.0)
        self.step_controller = step_controller
        self.max_depth = max_depth
        self.max_try = max_try

        size = max_depth + 1
        self.h = np.array(self.SEQUENCE[:size], dtype=np.int64)
        self.cost = np.cumsum(self.h).astype(np.float64)
        self.table_coef = np.zeros((size, size))
        for i in range(size):
            for j in range(i):
                nj2 = float(self.h[i - j - 1] ** 2)
                ni2 = float(self.h[i] ** 2)
                self.table_coef[i, j] = nj2 / (ni2 - nj2)

        self.ideal_rank = max_depth - 1
        self.ideal_step = np.zeros(size)
        self.cost_per_len = np.zeros(size)
        self.cost_per_len[0] = np.inf
        self.first_step = True
        self.step_reject = False
        self.last_error = 1.0
        self.last_step = 0.0
        self.iter_num = 0
        self.reject_num = 0

    def set_atol(self, atol: float):
        self.err_checker.set_atol(atol)

    def set_rtol(self, rtol: float):
        self.err_checker.set_rtol(rtol)

    @property
    def reject_rate(self) -> float:
        return self.reject_num / self.iter_num if self.iter_num else 0.0

    def _increment(self, system, start: np.ndarray, macro_step: float, k: int) -> np.ndarray:
        system.read_from_scalar_array(start)
        system.clear_increment()
        self.integrator.integrate_n_steps(system, macro_step, int(self.h[k]))
        return system.increment

    def _extrapolate(self, table, k: int):
        """Neville step for row k; table[0] ends up holding the best estimate."""
        for j in range(k, 0, -1):
            table[j - 1] = table[j] + (table[j] - table[j - 1]) * self.table_coef[k, k - j]

    def _in_converged_window(self, k: int) -> bool:
        return self.first_step or k in (self.ideal_rank - 1, self.ideal_rank, self.ideal_rank + 1)

    def _allowed(self, k: int) -> int:
        return min(max(k, 2), self.max_depth - 1)

    def _next_step_len(self, k_new: int, k: int) -> float:
        if k_new <= k:
            return self.ideal_step[k_new]
        return self.ideal_step[k] * self.cost[k + 1] / self.cost[k]

    def _set_next_iteration(self, k: int) -> float:
        cpl = self.cost_per_len
        if self.first_step:
            if not self.step_reject:
                self.ideal_rank = self._allowed(k)
            return self.ideal_step[k]

        if k in (self.ideal_rank - 1, self.ideal_rank):
            if cpl[k - 1] < self.DEC_FACTOR * cpl[k]:
                self.ideal_rank = self._allowed(k - 1)
            elif cpl[k] < self.INC_FACTOR * cpl[k - 1] and not self.step_reject:
                self.ideal_rank = self._allowed(k + 1)
            else:
                self.ideal_rank = self._allowed(k)
        else:
            if cpl[k - 2] < self.DEC_FACTOR * cpl[k - 1]:
                self.ideal_rank = self._allowed(k - 2)
            if cpl[k] < self.INC_FACTOR * cpl[self.ideal_rank] and not self.step_reject:
                self.ideal_rank = self._allowed(k)
        return self._next_step_len(self.ideal_rank, k)

    def _is_diverged(self, error: float, k: int) -> bool:
        if self.first_step:
            return False
        r = 1.0
        if k == self.ideal_rank - 1:
            r = float(self.h[k + 1] * self.h[k + 2]) / float(self.h[0] * self.h[0])
        elif k == self.ideal_rank:
            r = float(self.h[k + 1]) / float(self.h[0])
        return error > r * r

    def iterate(self, system, macro_step: float) -> float:
        system.collect_increment(True)
        try:
            return self._iterate(system, macro_step)
        finally:
            system.collect_increment(False)

    def _iterate(self, system, macro_step: float) -> float:
        iter_h = macro_step
        start = system.write_to_scalar_array()
        table = [None] * (self.max_depth + 1)

        for _ in range(self.max_try):
            self.iter_num += 1
            table[0] = self._increment(system, start, iter_h, 0)
            order = 1
            for k in range(1, min(self.ideal_rank + 1, self.max_depth) + 1):
                order = 2 * k + 1
                table[k] = self._increment(system, start, iter_h, k)
                self._extrapolate(table, k)

                error = self.err_checker.error(start, start + table[1], start + table[0])
                if not np.isfinite(error):
                    error = np.inf
                self.ideal_step[k] = iter_h * self.step_controller.next(order, error)
                self.cost_per_len[k] = self.cost[k] / self.ideal_step[k]

                if self._in_converged_window(k):
                    if error <= 1.0:
                        self.step_reject = False
                        system.read_from_scalar_array(start + table[0])
                        new_h = self._set_next_iteration(k)
                        self.first_step = False
                        self.last_error = error
                        self.last_step = iter_h
                        return iter_h * self.step_controller.limiter(order, new_h / iter_h)
                    if self._is_diverged(error, k):
                        break
            self.step_reject = True
            self.reject_num += 1
            new_h = self._set_next_iteration(k)
            iter_h *= self.step_controller.limiter(order, new_h / iter_h)

        system.read_from_scalar_array(start)
        raise StepSizeError(f"Bulirsch-Stoer step rejected {self.max_try} times at time {system.time:.16g}")


class IAS15:
    """
    Gauss-Radau (IAS15-style) adaptive iterator.

    Each attempt iterates the collocation until the predictor-corrector has
    converged, estimates the error from b6 relative to the start derivative
    and either accepts the step or retries with the controller's shorter
    step. Step control is PI (PID once Kd is set) with the integrator's effective order 7.

    The accuracy is set by `epsilon`, the bound on b6 relative to the start
    derivative. It is not a state tolerance: `set_atol` / `set_rtol` leave it
    alone, and values much below 1e-9 push b6 into round-off noise.

    Args:
        integrator: GaussRadau instance
        err_checker: IAS15Error; rtol `epsilon` when None
        step_controller: PID controller; safe guards (1, 0.9, 0.02, 4) when None
        max_pc_iter: Predictor-corrector sweeps per attempt
        max_try: Attempts before giving up
        epsilon: b6 tolerance
    """

    PC_RTOL = 1e-16
    EPSILON = 1e-9

    def __init__(self, integrator=None, err_checker=None, step_controller=None,
                 max_pc_iter: int = 12, max_try: int = 30, epsilon: float = EPSILON):
        if epsilon <= 0.0:
            raise ValueError(f"epsilon must be positive, got {epsilon}")
        self.integrator = integrator if integrator is not None else GaussRadau()
        self.err_checker = err_checker if err_checker is not None else IAS15Error(0.0, epsilon)
        if step_controller is None:
            step_controller = PIDController()
            step_controller.set_safe_guards(1.0, 0.9, 0.02, 4.0)
        self.step_controller = step_controller
        self.pc_checker = IAS15Error(0.0, self.PC_RTOL)
        self.max_pc_iter = max_pc_iter
        self.max_try = max_try
        self.control_order = (self.integrator.order - 1) // 2
        self.last_error = 1.0
        self.last_error2 = 1.0
        self.last_step = 0.0

    def set_atol(self, atol: float):
        pass

    def set_rtol(self, rtol: float):
        pass

    def set_epsilon(self, epsilon: float):
        if epsilon <= 0.0:
            raise ValueError(f"epsilon must be positive, got {epsilon}")
        self.err_checker.set_rtol(epsilon)

    def _converge_b_table(self, system, step: float, y0: np.ndarray, dy0: np.ndarray):
        integrator = self.integrator
        last_pc_error = np.inf
        for _ in range(self.max_pc_iter):
            last_b6 = integrator.b[-1].copy()
            integrator.calc_b_table(system, step, y0, dy0)
            pc_error = self.pc_checker.error(dy0, last_b6, integrator.b[-1])
            if pc_error < 1.0 or pc_error >= last_pc_error:
                break
            last_pc_error = pc_error

    def iterate(self, system, macro_step: float) -> float:
        integrator = self.integrator
        y0 = system.write_to_scalar_array()
        dy0 = system.evaluate_general_derivative()
        integrator.check_variable_size(len(y0))

        iter_h = macro_step
        for _ in range(self.max_try):
            self._converge_b_table(system, iter_h, y0, dy0)
            error = self.err_checker.error(dy0, integrator.b[-1])
            if not np.isfinite(error):
                error = np.inf
            new_h = self.step_controller.next_step_size(self.control_order, iter_h,
                                                        (error, self.last_error, self.last_error2))

            if error < 1.0:
                system.read_from_scalar_array(integrator.integrate_to_end(y0, dy0, iter_h))
                integrator.predict_new_b(new_h / iter_h)
                self.last_error2 = self.last_error
                self.last_error = error
                self.last_step = iter_h
                return new_h

            system.read_from_scalar_array(y0)
            integrator.rescale_b(new_h / iter_h)
            iter_h = new_h

        system.read_from_scalar_array(y0)
        raise StepSizeError(f"IAS15 step rejected {self.max_try} times at time {system.time:.16g}")


ODE_ITERATORS = {
    'const': ConstOdeIterator,
    'bisection': BisectionOdeIterator,
    'bulirsch-stoer': BulirschStoer,
    'ias15': IAS15,
}
