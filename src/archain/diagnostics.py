"""
Conservation diagnostics and derived quantities.

The functions accept either a `ParticleSet` or a particle system (anything
with `mass`, `pos` and `vel`). Potential energies and free-fall times are
evaluated over the same pair table the force evaluation uses, so for chain
systems close pairs are measured with chain-relative coordinates.
"""

import numpy as np

from archain import forces
from archain.constants import DEFAULT_UNITS, Units
from archain.interaction import build_pair_table


def kinetic_energy(particles) -> float:
    """T = ½ Σ m v²."""
    v2 = np.einsum('ij,ij->j', particles.vel.data, particles.vel.data)
    return 0.5 * float(np.dot(particles.mass, v2))


def potential_energy(particles, units: Units = DEFAULT_UNITS) -> float:
    """U = -G Σ_{i<j} m_i m_j / r_ij."""
    pairs = build_pair_table(particles)
    return float(forces.potential_energy(particles.mass, pairs.pi, pairs.pj, pairs.dr, units.G))


def total_energy(particles, units: Units = DEFAULT_UNITS) -> float:
    return kinetic_energy(particles) + potential_energy(particles, units)


def total_momentum(particles) -> np.ndarray:
    """Σ m v, shape (3,)."""
    return particles.vel.data @ particles.mass


def angular_momentum(particles) -> np.ndarray:
    """Σ m (r × v), shape (3,)."""
    r = particles.pos.to_array()
    v = particles.vel.to_array()
    return np.sum(particles.mass[:, None] * np.cross(r, v), axis=0)


def center_of_mass(particles):
    """
    Centre-of-mass position and velocity.

    Returns:
        tuple: (position (3,), velocity (3,))
    """
    m_tot = np.sum(particles.mass)
    com_pos = particles.pos.data @ particles.mass / m_tot
    com_vel = particles.vel.data @ particles.mass / m_tot
    return com_pos, com_vel


def move_to_com(particles):
    """Shift a ParticleSet in place so its centre of mass rests at the origin."""
    com_pos, com_vel = center_of_mass(particles)
    particles.pos.data -= com_pos[:, None]
    particles.vel.data -= com_vel[:, None]


def min_free_fall_time(particles, units: Units = DEFAULT_UNITS) -> float:
    """
    Shortest pairwise free-fall time of the system.

    Used to pick an initial step size when none is given.
    """
    pairs = build_pair_table(particles)
    return float(forces.min_free_fall_time(particles.mass, pairs.pi, pairs.pj, pairs.dr, units.G))


def relative_energy_error(energy: float, initial_energy: float) -> float:
    """|(E - E0) / E0|."""
    return abs((energy - initial_energy) / initial_energy)


def rms_relative_energy_error(energies, initial_energy: float) -> float:
    """Root-mean-square of the relative energy error over a series of samples."""
    energies = np.asarray(energies, dtype=np.float64)
    rel = (energies - initial_energy) / initial_energy
    return float(np.sqrt(np.mean(rel * rel)))
