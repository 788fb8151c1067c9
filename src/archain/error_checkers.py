"""
Error estimators for the adaptive ODE iterators.

Each checker turns a pair of candidate solutions into one dimensionless
number; error <= 1 means the step meets the tolerance.

For flat arrays every element is its own component. For `Coords` inputs each
vector counts as one component, measured by its largest absolute entry.

- WorstOffender: max_i |Δ_i| / (atol + s_i rtol)                (L∞)
- RMS:           sqrt(mean_i (|Δ_i| / (atol + s_i rtol))²)       (L2)
- IAS15Error:    max_i |Δ_i| / max_i (atol + |s_i| rtol)

where the scale s_i = max(|y0_i|, |y1_i|). Components whose tolerance
denominator is exactly zero (zero scale with atol = 0) are skipped.
"""

import numpy as np

from archain.coords import Coords


def _as_float_array(values, name: str) -> np.ndarray:
    try:
        arr = np.asarray(values, dtype=np.float64)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Unsupported element type for error estimate ({name}): {exc}") from exc
    return arr.reshape(-1)


def scaled_differences(y0, y1, y1_prime):
    """
    Component scales and absolute differences of two candidate solutions.

    Args:
        y0: Start-of-step state (for the scale)
        y1: First candidate
        y1_prime: Second candidate

    Returns:
        tuple: (scale, diff) as flat float arrays

    Raises:
        ValueError: If the inputs are not numeric arrays or Coords
    """
    if isinstance(y0, Coords) and isinstance(y1, Coords) and isinstance(y1_prime, Coords):
        scale = np.maximum(y0.max_abs(), y1.max_abs())
        diff = np.max(np.abs(y1_prime.data - y1.data), axis=0)
        return scale, diff

    a0 = _as_float_array(y0, 'y0')
    a1 = _as_float_array(y1, 'y1')
    a2 = _as_float_array(y1_prime, 'y1_prime')
    if not (a0.shape == a1.shape == a2.shape):
        raise ValueError(f"Error estimate inputs differ in size: {a0.shape}, {a1.shape}, {a2.shape}")
    return np.maximum(np.abs(a0), np.abs(a1)), np.abs(a2 - a1)


class ErrorChecker:
    """Absolute/relative tolerance holder shared by the checkers."""

    def __init__(self, atol: float = 1e-14, rtol: float = 1e-14):
        self.atol = atol
        self.rtol = rtol

    def set_atol(self, atol: float):
        self.atol = atol

    def set_rtol(self, rtol: float):
        self.rtol = rtol

    def _ratios(self, y0, y1, y1_prime) -> np.ndarray:
        scale, diff = scaled_differences(y0, y1, y1_prime)
        tol = self.atol + scale * self.rtol
        mask = tol != 0.0
        return diff[mask] / tol[mask]

    def error(self, y0, y1, y1_prime) -> float:
        raise NotImplementedError

    def __repr__(self):
        return f"{type(self).__name__}(atol={self.atol}, rtol={self.rtol})"


class WorstOffender(ErrorChecker):
    """L∞ norm: one bad component fails the step."""

    def error(self, y0, y1, y1_prime) -> float:
        ratios = self._ratios(y0, y1, y1_prime)
        if ratios.size == 0:
            return 0.0
        return float(np.max(ratios))


class RMS(ErrorChecker):
    """Root-mean-square norm."""

    def error(self, y0, y1, y1_prime) -> float:
        ratios = self._ratios(y0, y1, y1_prime)
        if ratios.size == 0:
            return 0.0
        return float(np.sqrt(np.mean(ratios * ratios)))


class IAS15Error(ErrorChecker):
    """
    Global relative norm used by IAS15: largest difference over the largest scale.

    `error(scale, diff)` takes the reference magnitudes and the differences
    directly; `error(scale, y0, y1)` forms diff = y1 - y0.
    """

    def __init__(self, atol: float = 0.0, rtol: float = 1e-9):
        super().__init__(atol, rtol)

    def error(self, scale, y0, y1=None) -> float:
        if isinstance(scale, Coords):
            s = scale.max_abs()
            if y1 is None:
                diff = y0.max_abs()
            else:
                diff = np.max(np.abs(y1.data - y0.data), axis=0)
        else:
            s = np.abs(_as_float_array(scale, 'scale'))
            if y1 is None:
                diff = np.abs(_as_float_array(y0, 'diff'))
            else:
                diff = np.abs(_as_float_array(y1, 'y1') - _as_float_array(y0, 'y0'))
        max_scale = np.max(self.atol + s * self.rtol) if s.size else 0.0
        max_diff = np.max(diff) if diff.size else 0.0
        if max_scale == 0.0:
            return 0.0 if max_diff == 0.0 else np.inf
        return float(max_diff / max_scale)


ERROR_CHECKERS = {
    'worst-offender': WorstOffender,
    'rms': RMS,
}


def make_error_checker(name: str, atol: float = 0.0, rtol: float = 1e-14) -> ErrorChecker:
    """
    Raises:
        ValueError: If the name is unknown
    """
    try:
        cls = ERROR_CHECKERS[name.lower()]
    except KeyError:
        raise ValueError(f"Unknown error checker '{name}', expected one of {sorted(ERROR_CHECKERS)}")
    return cls(atol, rtol)
