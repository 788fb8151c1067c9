"""
Long-term integration tests.

These reproduce the production accuracy target: a Sun-Earth orbit integrated
for 1000 years in astronomical units with the AR-chain system and the
Bulirsch-Stoer iterator. Run with `pytest --runslow`.
"""

import numpy as np
import pytest

from archain import diagnostics
from archain.constants import Units
from archain.interaction import Interaction
from archain.ode_iterators import BulirschStoer
from archain.output import TimeSlice
from archain.particles import ParticleSet
from archain.simulator import RunArgs, Simulator
from archain.systems import ARChainSystem

from conftest import circular_binary, circular_relative_position

M_EARTH = 3.003e-6  # [M_sun]
YEARS = 1000.0


@pytest.mark.slow
def test_sun_earth_thousand_years():
    units = Units.astronomical()
    particles = ParticleSet(circular_binary(1.0, M_EARTH, 1.0, G=units.G))
    diagnostics.move_to_com(particles)
    system = ARChainSystem(particles, Interaction(units=units))

    e0 = system.total_energy()
    energies = []
    sampler = TimeSlice(lambda s: energies.append(s.total_energy()), 0.0, YEARS, opt_num=1000)

    rtol = 1e-13
    args = RunArgs(end_time=YEARS, rtol=rtol)
    args.add_start_point_operation(sampler)
    args.add_post_step_operation(sampler)
    stats = Simulator(system, BulirschStoer()).run(args)

    assert stats['final_time'] >= YEARS
    assert len(energies) > 500
    assert diagnostics.rms_relative_energy_error(energies, e0) < 1e-12

    rel = system.pos[1].to_array() - system.pos[0].to_array()
    expected = circular_relative_position(stats['final_time'], 1.0, 1.0 + M_EARTH, G=units.G)
    # phase error accumulates over the orbits (one per year)
    assert np.linalg.norm(rel - expected) < 1e3 * rtol * 2.0 * np.pi * YEARS
