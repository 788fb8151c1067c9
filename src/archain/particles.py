"""
Particle records and the structure-of-arrays particle set.

A `Particle` is the user-facing record for one body (mass, position,
velocity and optional finite-size / tidal properties). A `ParticleSet` stores
N such bodies as parallel numpy arrays plus `Coords` for positions and
velocities, together with the shared simulation time.

The order of the initial particle records defines particle identity: index i
always refers to the same body. The particle count is fixed for the lifetime
of a set.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Sequence

import h5py
import numpy as np

from archain.coords import Coords
from archain.vector import Vector3


@dataclass
class Particle:
    """
    One body of the initial conditions.

    Attributes:
        mass: Mass in the active unit system
        pos: Position vector
        vel: Velocity vector
        radius: Physical radius (tidal force only)
        k_apsidal: Apsidal motion constant (0 disables the tidal force on this body)
        tau: Tidal lag time
        idn: Identifier; defaults to the position in the input sequence
    """

    mass: float
    pos: Vector3 = field(default_factory=Vector3)
    vel: Vector3 = field(default_factory=Vector3)
    radius: float = 0.0
    k_apsidal: float = 0.0
    tau: float = 0.0
    idn: int = -1

    def __post_init__(self):
        self.mass = float(self.mass)
        self.pos = Vector3.from_sequence(self.pos)
        self.vel = Vector3.from_sequence(self.vel)


class ParticleSet:
    """
    N bodies stored as parallel arrays.

    Core arrays:
    - mass (N,), idn (N,)
    - pos, vel: Coords of N vectors
    - radius, k_apsidal, tau (N,): tidal properties, zero for point masses
    - time: shared simulation time
    """

    def __init__(self, particles: Sequence[Particle], time: float = 0.0):
        """
        Args:
            particles: Ordered particle records
            time: Initial simulation time

        Raises:
            ValueError: If no particles are given
        """
        if len(particles) == 0:
            raise ValueError("A particle set needs at least one particle")

        self.mass = np.array([p.mass for p in particles], dtype=np.float64)
        self.idn = np.array([p.idn if p.idn >= 0 else i for i, p in enumerate(particles)],
                            dtype=np.int64)
        self.radius = np.array([p.radius for p in particles], dtype=np.float64)
        self.k_apsidal = np.array([p.k_apsidal for p in particles], dtype=np.float64)
        self.tau = np.array([p.tau for p in particles], dtype=np.float64)
        self.pos = Coords.from_vectors([p.pos for p in particles])
        self.vel = Coords.from_vectors([p.vel for p in particles])
        self.time = float(time)

    @property
    def number(self) -> int:
        """Number of particles."""
        return len(self.mass)

    def __len__(self):
        return self.number

    def __getitem__(self, i) -> Particle:
        return Particle(mass=self.mass[i], pos=self.pos[i], vel=self.vel[i],
                        radius=self.radius[i], k_apsidal=self.k_apsidal[i],
                        tau=self.tau[i], idn=int(self.idn[i]))

    def to_particles(self) -> List[Particle]:
        return [self[i] for i in range(self.number)]

    def copy(self) -> 'ParticleSet':
        return ParticleSet(self.to_particles(), time=self.time)

    @property
    def total_mass(self) -> float:
        return float(np.sum(self.mass))

    def save_to_hdf5(self, filepath: str, compression: str = "gzip"):
        """
        Save the particle set to an HDF5 file.

        Args:
            filepath: Path to HDF5 file
            compression: HDF5 compression method ("gzip", "lzf", or None)
        """
        filepath = Path(filepath)
        filepath.parent.mkdir(parents=True, exist_ok=True)

        with h5py.File(filepath, 'w') as f:
            f.attrs['time'] = self.time
            f.attrs['number'] = self.number

            f.create_dataset('mass', data=self.mass, compression=compression)
            f.create_dataset('idn', data=self.idn, compression=compression)
            f.create_dataset('position', data=self.pos.to_array(), compression=compression)
            f.create_dataset('velocity', data=self.vel.to_array(), compression=compression)

            tide = f.create_group('tide')
            tide.create_dataset('radius', data=self.radius, compression=compression)
            tide.create_dataset('k_apsidal', data=self.k_apsidal, compression=compression)
            tide.create_dataset('tau', data=self.tau, compression=compression)

    @classmethod
    def load_from_hdf5(cls, filepath: str) -> 'ParticleSet':
        """
        Load a particle set from an HDF5 file written by `save_to_hdf5`.

        Raises:
            FileNotFoundError: If the file does not exist
        """
        filepath = Path(filepath)
        if not filepath.exists():
            raise FileNotFoundError(f"Particle file not found: {filepath}")

        with h5py.File(filepath, 'r') as f:
            mass = f['mass'][:]
            idn = f['idn'][:]
            pos = f['position'][:]
            vel = f['velocity'][:]
            radius = f['tide/radius'][:]
            k_apsidal = f['tide/k_apsidal'][:]
            tau = f['tide/tau'][:]
            time = float(f.attrs['time'])

        particles = [
            Particle(mass=mass[i], pos=pos[i], vel=vel[i], radius=radius[i],
                     k_apsidal=k_apsidal[i], tau=tau[i], idn=int(idn[i]))
            for i in range(len(mass))
        ]
        return cls(particles, time=time)

    def __repr__(self) -> str:
        return f"ParticleSet(number={self.number}, time={self.time:.6g})"
