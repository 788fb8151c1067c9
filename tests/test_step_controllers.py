"""
Tests for the step-size controllers.
"""

import pytest

from archain.step_controllers import ConstStepController, PIDController, make_step_controller


class TestPIDController:
    """Tests for the error-feedback controller."""

    def test_proportional_formula(self):
        ctrl = PIDController()
        ratio = ctrl.next(4, 0.5)
        assert ratio == pytest.approx(0.65 * (0.95 / 0.5) ** 0.25)

    def test_small_error_grows_step(self):
        ctrl = PIDController()
        assert ctrl.next_step_size(4, 1.0, 1e-3) > 1.0

    def test_large_error_shrinks_step(self):
        ctrl = PIDController()
        assert ctrl.next_step_size(4, 1.0, 10.0) < 1.0

    def test_zero_error_gives_max_growth(self):
        ctrl = PIDController()
        assert ctrl.next(2, 0.0) == pytest.approx((1.0 / 0.02) ** 0.5)

    def test_order_dependent_limiter(self):
        ctrl = PIDController()
        lower = 0.02 ** 0.25 / 4.0
        upper = (1.0 / 0.02) ** 0.25
        assert ctrl.limiter(4, 1e6) == pytest.approx(upper)
        assert ctrl.limiter(4, 1e-6) == pytest.approx(lower)
        assert ctrl.limiter(4, 1.1) == 1.1

    def test_fixed_limiter(self):
        ctrl = PIDController()
        ctrl.set_limiter(0.1, 2.0)
        assert ctrl.limiter(7, 100.0) == 2.0
        assert ctrl.limiter(7, 0.0) == 0.1
        with pytest.raises(ValueError):
            ctrl.set_limiter(2.0, 1.0)

    def test_pi_control_uses_last_error(self):
        ctrl = PIDController()
        p_only = ctrl.next_step_size(7, 1.0, 0.1)
        steady = ctrl.next_step_size(7, 1.0, (0.1, 0.95))
        growing = ctrl.next_step_size(7, 1.0, (0.1, 0.01))
        assert growing < steady
        assert steady != p_only

    def test_derivative_term(self):
        ctrl = PIDController()
        pi = ctrl.next_step_size(7, 1.0, (0.1, 0.2))
        assert ctrl.next_step_size(7, 1.0, (0.1, 0.2, 0.2)) == pi
        ctrl.set_PID_coefficients(0.7, 0.4, 0.1)
        # e_last² / (e · e_last2) = 2
        assert ctrl.next_step_size(7, 1.0, (0.1, 0.2, 0.2)) == pytest.approx(pi * 2.0 ** (0.1 / 7))
        # steadily falling error: no derivative correction
        assert ctrl.next_step_size(7, 1.0, (0.1, 0.2, 0.4)) == pytest.approx(pi)

    def test_single_element_tuple(self):
        ctrl = PIDController()
        assert ctrl.next_step_size(3, 2.0, (0.5,)) == ctrl.next_step_size(3, 2.0, 0.5)

    def test_bad_tuple(self):
        with pytest.raises(ValueError):
            PIDController().next_step_size(3, 1.0, (0.1, 0.2, 0.3, 0.4))

    def test_order_out_of_range(self):
        with pytest.raises(ValueError):
            PIDController(max_order=10).limiter(11, 1.0)

    def test_safe_guards(self):
        ctrl = PIDController()
        ctrl.set_safe_guards(0.9, 1.0)
        assert ctrl.next(2, 1.0) == pytest.approx(0.9)
        assert ctrl.safe_guard3 == 0.02


class TestConstStepController:
    """The constant controller never changes the step."""

    def test_returns_old_step(self):
        ctrl = ConstStepController()
        assert ctrl.next_step_size(2, 0.125, 1e9) == 0.125
        assert ctrl.next(2, 1e-9) == 1.0

    def test_factory(self):
        assert isinstance(make_step_controller('const'), ConstStepController)
        assert isinstance(make_step_controller('PID'), PIDController)
        with pytest.raises(ValueError):
            make_step_controller('fuzzy')
