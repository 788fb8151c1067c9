"""
Compensated-summation scalars.

Quantities accumulated by many small increments over a long integration
(the regularization weight ω and binding energy, energy bookkeeping) lose
precision with plain float addition once the increment drops below the last
bit of the running value. These types carry a running correction term that
recovers the lost low-order bits on every `+=` / `-=`.

Three variants are provided:
- KahanNumber: classic Kahan summation (one correction term).
- NeumaierNumber: Kahan–Babuška–Neumaier; also correct when an increment is
  larger than the running sum.
- KleinNumber: Klein's second-order iterative Kahan–Babuška; two cascaded
  correction terms.

All of them behave like floats in expressions (`float(x)`, `x + 1.0`, `x < y`),
but only `+=` / `-=` are compensated. Rebinding a name to a plain float, or
calling `reset`, discards the correction.
"""


class CompensatedScalar:
    """Base class: float-like behaviour on top of `value`."""

    __slots__ = ()

    def reset(self, value: float = 0.0):
        raise NotImplementedError

    def _accumulate(self, rhs: float):
        raise NotImplementedError

    @property
    def value(self) -> float:
        raise NotImplementedError

    def __iadd__(self, rhs):
        self._accumulate(float(rhs))
        return self

    def __isub__(self, rhs):
        self._accumulate(-float(rhs))
        return self

    def __float__(self):
        return self.value

    def __add__(self, other):
        return self.value + float(other)

    __radd__ = __add__

    def __sub__(self, other):
        return self.value - float(other)

    def __rsub__(self, other):
        return float(other) - self.value

    def __mul__(self, other):
        return self.value * float(other)

    __rmul__ = __mul__

    def __truediv__(self, other):
        return self.value / float(other)

    def __rtruediv__(self, other):
        return float(other) / self.value

    def __neg__(self):
        return -self.value

    def __abs__(self):
        return abs(self.value)

    def __eq__(self, other):
        return self.value == float(other)

    def __lt__(self, other):
        return self.value < float(other)

    def __le__(self, other):
        return self.value <= float(other)

    def __gt__(self, other):
        return self.value > float(other)

    def __ge__(self, other):
        return self.value >= float(other)

    __hash__ = None

    def __repr__(self):
        return f"{type(self).__name__}({self.value!r})"


class KahanNumber(CompensatedScalar):
    """Kahan summation: `err` holds (computed - exact) of the last addition."""

    __slots__ = ('real', 'err')

    def __init__(self, value: float = 0.0):
        self.reset(value)

    def reset(self, value: float = 0.0):
        self.real = float(value)
        self.err = 0.0

    def _accumulate(self, rhs: float):
        add = rhs - self.err
        total = self.real + add
        self.err = (total - self.real) - add
        self.real = total

    @property
    def value(self) -> float:
        return self.real - self.err


class NeumaierNumber(CompensatedScalar):
    """Kahan–Babuška–Neumaier summation."""

    __slots__ = ('real', 'err')

    def __init__(self, value: float = 0.0):
        self.reset(value)

    def reset(self, value: float = 0.0):
        self.real = float(value)
        self.err = 0.0

    def _accumulate(self, rhs: float):
        total = self.real + rhs
        if abs(self.real) >= abs(rhs):
            self.err += (self.real - total) + rhs
        else:
            self.err += (rhs - total) + self.real
        self.real = total

    @property
    def value(self) -> float:
        return self.real + self.err


class KleinNumber(CompensatedScalar):
    """Second-order iterative Kahan–Babuška (Klein 2006)."""

    __slots__ = ('real', 'cs', 'ccs')

    def __init__(self, value: float = 0.0):
        self.reset(value)

    def reset(self, value: float = 0.0):
        self.real = float(value)
        self.cs = 0.0
        self.ccs = 0.0

    def _accumulate(self, rhs: float):
        t = self.real + rhs
        if abs(self.real) >= abs(rhs):
            c = (self.real - t) + rhs
        else:
            c = (rhs - t) + self.real
        self.real = t
        t = self.cs + c
        if abs(self.cs) >= abs(c):
            cc = (self.cs - t) + c
        else:
            cc = (c - t) + self.cs
        self.cs = t
        self.ccs += cc

    @property
    def value(self) -> float:
        return self.real + (self.cs + self.ccs)
