"""
Unit tests for compensated summation.

A running value of 1.0 receiving many increments of 1e-16 never moves with
plain float addition (each increment is below half an ulp), so the
compensated types must track the exact sum where plain floats cannot.
"""

from fractions import Fraction

import pytest

from archain.kahan import KahanNumber, KleinNumber, NeumaierNumber

N_SMALL = 100000
SMALL = 1e-16


def exact_sum(values):
    return float(sum(Fraction(v) for v in values))


@pytest.mark.parametrize("cls", [KahanNumber, NeumaierNumber, KleinNumber])
class TestSmallIncrements:
    """Tests accumulating many increments below the resolution of the sum."""

    def test_plain_float_loses_increments(self, cls):
        total = 1.0
        for _ in range(N_SMALL):
            total += SMALL
        assert total == 1.0

    def test_compensated_recovers_increments(self, cls):
        total = cls(1.0)
        for _ in range(N_SMALL):
            total += SMALL
        expected = exact_sum([1.0] + [SMALL] * N_SMALL)
        assert abs(total.value - expected) < 1e-15
        assert total.value > 1.0

    def test_subtraction_compensated(self, cls):
        total = cls(1.0)
        for _ in range(N_SMALL):
            total -= SMALL
        assert abs(total.value - (1.0 - N_SMALL * SMALL)) < 1e-15

    def test_reset_discards_correction(self, cls):
        total = cls(1.0)
        total += SMALL
        total.reset(2.0)
        assert total.value == 2.0


class TestCancellation:
    """Tests where an increment is larger than the running sum."""

    values = [1e100, 1.0, -1e100]

    def test_neumaier_handles_large_increment(self):
        total = NeumaierNumber()
        for v in self.values:
            total += v
        assert total.value == 1.0

    def test_klein_handles_large_increment(self):
        total = KleinNumber()
        for v in self.values:
            total += v
        assert total.value == 1.0

    def test_alternating_magnitudes(self):
        values = []
        for i in range(1000):
            values.extend([1e8, 1e-8 * (i + 1), -1e8])
        total = KleinNumber()
        for v in values:
            total += v
        assert abs(total.value - exact_sum(values)) <= 1e-12 * abs(exact_sum(values))


class TestFloatBehaviour:
    """Compensated numbers behave like floats in expressions."""

    def test_expressions(self):
        k = KahanNumber(2.0)
        assert float(k) == 2.0
        assert k + 1.0 == 3.0
        assert 1.0 + k == 3.0
        assert k * 2.0 == 4.0
        assert 1.0 / k == 0.5
        assert 5.0 - k == 3.0
        assert -k == -2.0
        assert k > 1.0 and k < 3.0
        assert k == 2.0

    def test_iadd_keeps_type(self):
        k = KahanNumber(1.0)
        k += 1.0
        assert isinstance(k, KahanNumber)
        assert k.value == 2.0
