"""
Tests for energy, momentum and centre-of-mass diagnostics.
"""

import numpy as np
import pytest

from archain import diagnostics
from archain.constants import Units
from archain.particles import Particle, ParticleSet


class TestEnergies:
    """Tests for kinetic and potential energy."""

    def test_kinetic_energy(self):
        ps = ParticleSet([Particle(2.0, vel=[3.0, 0.0, 0.0]), Particle(1.0, pos=[1, 0, 0], vel=[0.0, 0.0, 4.0])])
        assert diagnostics.kinetic_energy(ps) == pytest.approx(0.5 * 2.0 * 9.0 + 0.5 * 16.0)

    def test_potential_energy_pair(self):
        ps = ParticleSet([Particle(2.0), Particle(3.0, pos=[0.0, 2.0, 0.0])])
        assert diagnostics.potential_energy(ps) == pytest.approx(-3.0)
        astro = Units.astronomical()
        assert diagnostics.potential_energy(ps, astro) == pytest.approx(-3.0 * astro.G)

    def test_potential_energy_triple(self, triple):
        ps = ParticleSet(triple)
        expected = -(3 * 4 / 5.0 + 3 * 5 / 4.0 + 4 * 5 / 3.0)
        assert diagnostics.potential_energy(ps) == pytest.approx(expected)
        assert diagnostics.total_energy(ps) == pytest.approx(expected)

    def test_circular_binary_virial(self, binary):
        ps = ParticleSet(binary)
        kinetic = diagnostics.kinetic_energy(ps)
        potential = diagnostics.potential_energy(ps)
        assert 2.0 * kinetic == pytest.approx(-potential, rel=1e-12)


class TestMomentum:
    """Tests for momentum, angular momentum and the COM frame."""

    def test_binary_momentum_zero(self, binary):
        ps = ParticleSet(binary)
        assert np.allclose(diagnostics.total_momentum(ps), 0.0, atol=1e-15)

    def test_angular_momentum_along_z(self, binary):
        L = diagnostics.angular_momentum(ParticleSet(binary))
        assert abs(L[0]) < 1e-15 and abs(L[1]) < 1e-15
        assert L[2] > 0.0

    def test_move_to_com(self):
        ps = ParticleSet([
            Particle(1.0, pos=[1.0, 1.0, 1.0], vel=[1.0, 0.0, 0.0]),
            Particle(3.0, pos=[2.0, 1.0, 1.0], vel=[0.0, 1.0, 0.0]),
        ])
        diagnostics.move_to_com(ps)
        com_pos, com_vel = diagnostics.center_of_mass(ps)
        assert np.allclose(com_pos, 0.0, atol=1e-15)
        assert np.allclose(com_vel, 0.0, atol=1e-15)
        assert np.allclose(ps.pos[1].to_array() - ps.pos[0].to_array(), [1.0, 0.0, 0.0])


class TestErrors:
    """Tests for relative and RMS energy errors and the free-fall time."""

    def test_relative_energy_error(self):
        assert diagnostics.relative_energy_error(-1.0 + 1e-10, -1.0) == pytest.approx(1e-10)

    def test_rms_error(self):
        energies = np.array([-1.0, -1.0 + 3e-10, -1.0 - 4e-10])
        expected = np.sqrt((0.0 + 9e-20 + 16e-20) / 3.0)
        assert diagnostics.rms_relative_energy_error(energies, -1.0) == pytest.approx(expected)

    def test_free_fall_time(self):
        ps = ParticleSet([Particle(0.5), Particle(0.5, pos=[1.0, 0.0, 0.0])])
        expected = 0.5 * np.pi / np.sqrt(2.0)
        assert diagnostics.min_free_fall_time(ps) == pytest.approx(expected)
