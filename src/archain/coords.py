"""
Structure-of-arrays coordinate container.

A `Coords` holds the x, y and z components of N vectors as the three rows of
one contiguous (3, N) float64 array. The three rows therefore always have the
same length, and whole-system updates (drift, kick, chain transforms) are
single vectorised numpy expressions on `data`.

Index i refers to the same body in every Coords owned by one particle system.
"""

import numpy as np

from archain.vector import Vector3


class Coords:
    """Three parallel component arrays (x, y, z) indexed by particle."""

    __slots__ = ('data',)

    def __init__(self, n: int = 0, data=None):
        """
        Args:
            n: Number of vectors (zero-initialised) when `data` is not given
            data: Optional (3, N) array-like to copy from
        """
        if data is None:
            self.data = np.zeros((3, n), dtype=np.float64)
        else:
            arr = np.array(data, dtype=np.float64)
            if arr.ndim != 2 or arr.shape[0] != 3:
                raise ValueError(f"Coords data must have shape (3, N), got {arr.shape}")
            self.data = np.ascontiguousarray(arr)

    @classmethod
    def from_vectors(cls, vectors) -> 'Coords':
        """Build from a sequence of 3-vectors (rows), e.g. an (N, 3) array."""
        rows = [tuple(Vector3.from_sequence(v)) for v in vectors]
        if not rows:
            return cls(0)
        return cls(data=np.array(rows, dtype=np.float64).T)

    @classmethod
    def zeros_like(cls, other: 'Coords') -> 'Coords':
        return cls(len(other))

    @property
    def x(self) -> np.ndarray:
        return self.data[0]

    @x.setter
    def x(self, values):
        self.data[0, :] = values

    @property
    def y(self) -> np.ndarray:
        return self.data[1]

    @y.setter
    def y(self, values):
        self.data[1, :] = values

    @property
    def z(self) -> np.ndarray:
        return self.data[2]

    @z.setter
    def z(self, values):
        self.data[2, :] = values

    def __len__(self):
        return self.data.shape[1]

    def __getitem__(self, i) -> Vector3:
        return Vector3(self.data[0, i], self.data[1, i], self.data[2, i])

    def __setitem__(self, i, vec):
        self.data[:, i] = tuple(Vector3.from_sequence(vec))

    def __iter__(self):
        for i in range(len(self)):
            yield self[i]

    def copy(self) -> 'Coords':
        return Coords(data=self.data)

    def assign(self, other: 'Coords'):
        """Copy the values of another container of the same size in place."""
        self.data[...] = other.data

    def set_zero(self):
        self.data.fill(0.0)

    def advance(self, rate: 'Coords', dt: float):
        """In-place `self += rate * dt`."""
        self.data += rate.data * dt

    def norms(self) -> np.ndarray:
        """Magnitude of every vector."""
        return np.sqrt(np.einsum('ij,ij->j', self.data, self.data))

    def max_abs(self) -> np.ndarray:
        """Largest absolute component of every vector."""
        return np.max(np.abs(self.data), axis=0)

    def to_array(self) -> np.ndarray:
        """(N, 3) copy, one row per vector."""
        return self.data.T.copy()

    def flatten(self) -> np.ndarray:
        """1-D copy laid out as [x..., y..., z...]."""
        return self.data.reshape(-1).copy()

    def load_flat(self, values):
        """Inverse of `flatten`."""
        self.data[...] = np.asarray(values, dtype=np.float64).reshape(3, -1)

    def __repr__(self):
        return f"Coords(n={len(self)})"
