"""
Tests for particle records, the ParticleSet container and its HDF5 snapshots.
"""

import numpy as np
import pytest
import h5py

from archain.particles import Particle, ParticleSet
from archain.vector import Vector3


class TestParticle:
    """Tests for the Particle record."""

    def test_sequences_become_vectors(self):
        p = Particle(2, pos=[1, 2, 3], vel=(0.0, 1.0, 0.0))
        assert isinstance(p.pos, Vector3)
        assert p.pos == Vector3(1.0, 2.0, 3.0)
        assert p.mass == 2.0
        assert isinstance(p.mass, float)

    def test_defaults(self):
        p = Particle(1.0)
        assert p.pos == Vector3()
        assert p.radius == 0.0 and p.k_apsidal == 0.0 and p.tau == 0.0


class TestParticleSet:
    """Tests for the structure-of-arrays particle container."""

    def test_empty_set_rejected(self):
        with pytest.raises(ValueError):
            ParticleSet([])

    def test_arrays_and_default_ids(self, triple):
        ps = ParticleSet(triple, time=1.5)
        assert ps.number == len(ps) == 3
        assert np.array_equal(ps.mass, [3.0, 4.0, 5.0])
        assert np.array_equal(ps.idn, [0, 1, 2])
        assert ps.time == 1.5
        assert ps.total_mass == 12.0
        assert ps.pos[1] == Vector3(-2.0, -1.0, 0.0)

    def test_coordinate_lengths_match_particles(self, triple):
        ps = ParticleSet(triple)
        assert len(ps.pos) == len(ps.vel) == ps.number

    def test_missing_ids_use_position(self):
        ps = ParticleSet([Particle(1.0, pos=[0, 0, 0]), Particle(1.0, pos=[1, 0, 0], idn=7)])
        assert np.array_equal(ps.idn, [0, 7])

    def test_copy_is_deep(self, binary):
        ps = ParticleSet(binary)
        cp = ps.copy()
        cp.pos.x[0] = 100.0
        cp.mass[0] = 9.0
        assert ps.pos.x[0] != 100.0
        assert ps.mass[0] != 9.0

    def test_indexing_returns_record(self, binary):
        ps = ParticleSet(binary)
        p = ps[1]
        assert isinstance(p, Particle)
        assert p.mass == binary[1].mass
        assert p.vel == binary[1].vel
        assert [q.idn for q in ps.to_particles()] == [0, 1]


class TestHDF5:
    """Tests for saving and loading particle snapshots."""

    def test_round_trip(self, tmp_path):
        particles = [
            Particle(1.0, pos=[0.1, 0.2, 0.3], vel=[1.0, 0.0, -1.0], radius=0.01,
                     k_apsidal=0.2, tau=1e-3, idn=11),
            Particle(0.5, pos=[-1.0, 2.0, 0.0], vel=[0.0, 0.5, 0.0], idn=12),
        ]
        ps = ParticleSet(particles, time=3.25)
        path = tmp_path / "snap" / "particles.h5"
        ps.save_to_hdf5(str(path))

        loaded = ParticleSet.load_from_hdf5(str(path))
        assert loaded.time == 3.25
        assert np.array_equal(loaded.mass, ps.mass)
        assert np.array_equal(loaded.idn, [11, 12])
        assert np.array_equal(loaded.pos.data, ps.pos.data)
        assert np.array_equal(loaded.vel.data, ps.vel.data)
        assert np.array_equal(loaded.k_apsidal, [0.2, 0.0])
        assert np.array_equal(loaded.tau, [1e-3, 0.0])

    def test_file_layout(self, tmp_path, triple):
        path = tmp_path / "triple.h5"
        ParticleSet(triple).save_to_hdf5(str(path))
        with h5py.File(path, 'r') as f:
            assert f.attrs['number'] == 3
            assert f['position'].shape == (3, 3)
            assert 'tide' in f and 'radius' in f['tide']

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            ParticleSet.load_from_hdf5(str(tmp_path / "nope.h5"))
