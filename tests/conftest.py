"""
Pytest configuration for the AR-chain integrator tests.

This file ensures the archain package is importable from tests and provides
shared two-body fixtures.
"""

import sys
from pathlib import Path

import numpy as np
import pytest

# Add src to the Python path
src_root = Path(__file__).parent.parent / 'src'
sys.path.insert(0, str(src_root))

from archain.particles import Particle  # noqa: E402


def pytest_addoption(parser):
    parser.addoption("--runslow", action="store_true", default=False, help="run slow tests")


def pytest_collection_modifyitems(config, items):
    if config.getoption("--runslow"):
        return
    skip_slow = pytest.mark.skip(reason="need --runslow option to run")
    for item in items:
        if "slow" in item.keywords:
            item.add_marker(skip_slow)


def circular_binary(m1=1.0, m2=1e-3, separation=1.0, G=1.0):
    """Two bodies on a circular orbit around their common centre of mass (xy-plane)."""
    total = m1 + m2
    v_rel = np.sqrt(G * total / separation)
    p1 = Particle(m1, pos=[-separation * m2 / total, 0.0, 0.0], vel=[0.0, -v_rel * m2 / total, 0.0], idn=0)
    p2 = Particle(m2, pos=[separation * m1 / total, 0.0, 0.0], vel=[0.0, v_rel * m1 / total, 0.0], idn=1)
    return [p1, p2]


def circular_relative_position(t, separation=1.0, total_mass=1.001, G=1.0):
    """Analytic relative position r2 - r1 of `circular_binary` at time t."""
    omega = np.sqrt(G * total_mass / separation ** 3)
    return separation * np.array([np.cos(omega * t), np.sin(omega * t), 0.0])


def kepler_binary(m1=1.0, m2=0.5, a=1.0, e=0.5, G=1.0):
    """Eccentric binary starting at apocentre, in the centre-of-mass frame."""
    total = m1 + m2
    r = a * (1.0 + e)
    v = np.sqrt(G * total / a * (1.0 - e) / (1.0 + e))
    p1 = Particle(m1, pos=[-r * m2 / total, 0.0, 0.0], vel=[0.0, -v * m2 / total, 0.0], idn=0)
    p2 = Particle(m2, pos=[r * m1 / total, 0.0, 0.0], vel=[0.0, v * m1 / total, 0.0], idn=1)
    return [p1, p2]


def kepler_period(m1=1.0, m2=0.5, a=1.0, G=1.0):
    return 2.0 * np.pi * np.sqrt(a ** 3 / (G * (m1 + m2)))


def three_body():
    """Pythagorean three-body initial conditions (bodies at rest)."""
    return [
        Particle(3.0, pos=[1.0, 3.0, 0.0], idn=0),
        Particle(4.0, pos=[-2.0, -1.0, 0.0], idn=1),
        Particle(5.0, pos=[1.0, -1.0, 0.0], idn=2),
    ]


@pytest.fixture
def binary():
    return circular_binary()


@pytest.fixture
def triple():
    return three_body()
