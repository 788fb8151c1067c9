"""
Step-size controllers.

PIDController
    next = old · clip(S1 · (S2 / e)^(1/k))                          (P)
    next = old · clip(S1 · (S2 / e)^(Kp/k) · (e_last / S2)^(Ki/k))   (PI)
    PID multiplies the PI ratio by (e_last² / (e · e_last2))^(Kd/k), with
    e_last2 the error two steps back; Kd = 0 reduces it to PI.

    k is the integrator order. The clip bounds depend on the order,
    [S3^(1/k) / S4, (1/S3)^(1/k)], unless fixed bounds are set with
    `set_limiter`. A zero error yields the largest allowed growth.

ConstStepController
    Always returns the previous step (fixed-step regression runs).
"""

import numpy as np


class PIDController:
    """
    Error-feedback step-size controller.

    Args:
        max_order: Largest integrator order the tables are built for
    """

    def __init__(self, max_order: int = 50):
        self.max_order = max_order
        self.safe_guard1 = 0.65
        self.safe_guard2 = 0.95
        self.safe_guard3 = 0.02
        self.safe_guard4 = 4.0
        self.Kp = 0.7
        self.Ki = 0.4
        self.Kd = 0.0
        self._fixed_limits = None
        self._build_tables()

    def _build_tables(self):
        orders = np.arange(self.max_order + 1, dtype=np.float64)
        self.expon = np.zeros(self.max_order + 1)
        self.expon[1:] = 1.0 / orders[1:]
        self.limiter_max = (1.0 / self.safe_guard3) ** self.expon
        self.limiter_min = self.safe_guard3 ** self.expon / self.safe_guard4
        self.limiter_max[0] = 1.0
        self.limiter_min[0] = 1.0 / self.safe_guard4

    def set_safe_guards(self, S1: float, S2: float, S3: float = None, S4: float = None):
        """Set the safety factors; S3/S4 (limiter shape) are kept when not given."""
        self.safe_guard1 = S1
        self.safe_guard2 = S2
        if S3 is not None:
            self.safe_guard3 = S3
        if S4 is not None:
            self.safe_guard4 = S4
        self._build_tables()

    def set_PID_coefficients(self, Kp: float, Ki: float, Kd: float = 0.0):
        self.Kp = Kp
        self.Ki = Ki
        self.Kd = Kd

    def set_limiter(self, lower: float, upper: float):
        """Use fixed step-ratio bounds instead of the order-dependent ones."""
        if not 0 < lower <= upper:
            raise ValueError(f"Invalid limiter bounds ({lower}, {upper})")
        self._fixed_limits = (lower, upper)

    def _bounds(self, order: int):
        if self._fixed_limits is not None:
            return self._fixed_limits
        if not 0 <= order <= self.max_order:
            raise ValueError(f"Order {order} outside controller range [0, {self.max_order}]")
        return self.limiter_min[order], self.limiter_max[order]

    def limiter(self, order: int, ratio: float) -> float:
        """Clip a step-size ratio to the allowed range."""
        lower, upper = self._bounds(order)
        return min(max(ratio, lower), upper)

    def next(self, order: int, error: float) -> float:
        """Proportional step-size ratio for the given error."""
        if error == 0.0:
            return self._bounds(order)[1]
        ratio = self.safe_guard1 * (self.safe_guard2 / error) ** self.expon[order]
        return self.limiter(order, ratio)

    def next_step_size(self, order: int, old_step: float, error) -> float:
        """
        Recommended next step.

        Args:
            order: Formal order of the integrator
            old_step: Step just taken
            error: Scalar error, a (error, last_error) pair for PI control or
                an (error, last_error, last_error2) triple for PID control

        Returns:
            float: Next step size
        """
        if isinstance(error, (tuple, list)):
            if len(error) == 1:
                return old_step * self.next(order, error[0])
            if len(error) not in (2, 3):
                raise ValueError(f"Expected 1 to 3 error values, got {len(error)}")
            err, last_err = error[0], error[1]
            if err == 0.0:
                return old_step * self._bounds(order)[1]
            e = self.expon[order]
            ratio = (self.safe_guard1 * (self.safe_guard2 / err) ** (self.Kp * e)
                     * (last_err / self.safe_guard2) ** (self.Ki * e))
            if len(error) == 3 and self.Kd != 0.0 and error[2] > 0.0 and last_err > 0.0:
                ratio *= (last_err * last_err / (err * error[2])) ** (self.Kd * e)
            return old_step * self.limiter(order, ratio)
        return old_step * self.next(order, error)

    def __repr__(self):
        return (f"PIDController(S=({self.safe_guard1}, {self.safe_guard2}, {self.safe_guard3}, "
                f"{self.safe_guard4}), Kp={self.Kp}, Ki={self.Ki}, Kd={self.Kd})")


class ConstStepController:
    """Returns the previous step unchanged."""

    def next(self, order: int, error: float) -> float:
        return 1.0

    def limiter(self, order: int, ratio: float) -> float:
        return 1.0

    def next_step_size(self, order: int, old_step: float, error) -> float:
        return old_step


STEP_CONTROLLERS = {
    'pid': PIDController,
    'const': ConstStepController,
}


def make_step_controller(name: str):
    """
    Raises:
        ValueError: If the name is unknown
    """
    try:
        return STEP_CONTROLLERS[name.lower()]()
    except KeyError:
        raise ValueError(f"Unknown step controller '{name}', expected one of {sorted(STEP_CONTROLLERS)}")
