"""
Tests for the adaptive ODE iterators.

Tests cover:
- Energy error scaling with the requested tolerance
- Accepted steps, recommended steps and bookkeeping
- Determinism of repeated runs
- Failure reporting when no acceptable step exists
"""

import numpy as np
import pytest

from archain.error_checkers import WorstOffender
from archain.integrators import GaussRadau, LeapFrogDKD, Symplectic4th, Symplectic6th
from archain.ode_iterators import (
    BisectionOdeIterator,
    BulirschStoer,
    ConstOdeIterator,
    IAS15,
    ODE_ITERATORS,
    StepSizeError,
)
from archain.simulator import RunArgs, Simulator
from archain.systems import ARChainSystem, SimpleSystem

from conftest import kepler_binary, kepler_period


def integrate(system, iterator, end_time, rtol):
    iterator.set_atol(0.0)
    iterator.set_rtol(rtol)
    h = 0.01 * system.step_scale()
    steps = 0
    while system.time < end_time:
        system.pre_iter_process()
        h = iterator.iterate(system, h)
        system.post_iter_process()
        steps += 1
    return steps


def energy_error(system_cls, iterator, rtol, orbits=1.0):
    system = system_cls(kepler_binary())
    e0 = system.total_energy()
    integrate(system, iterator, orbits * kepler_period(), rtol)
    return abs((system.total_energy() - e0) / e0)


class TestConstOdeIterator:
    """Fixed-step driver."""

    def test_returns_same_step(self, triple):
        system = SimpleSystem(triple)
        iterator = ConstOdeIterator()
        assert iterator.iterate(system, 0.01) == 0.01
        assert iterator.last_step == 0.01
        assert system.time == pytest.approx(0.01)

    def test_registry(self):
        assert set(ODE_ITERATORS) == {'const', 'bisection', 'bulirsch-stoer', 'ias15'}


class TestBulirschStoer:
    """Tests for the extrapolation iterator."""

    def test_invalid_depth(self):
        with pytest.raises(ValueError):
            BulirschStoer(max_depth=2)

    def test_energy_error_follows_tolerance(self):
        errors = [energy_error(SimpleSystem, BulirschStoer(), rtol) for rtol in (1e-6, 1e-8, 1e-10, 1e-12)]
        assert errors[-1] < 1e-10
        assert all(tight < loose for loose, tight in zip(errors, errors[1:]))

    @pytest.mark.parametrize("integrator", [Symplectic4th(), Symplectic6th()])
    def test_higher_order_substeps(self, integrator):
        assert energy_error(SimpleSystem, BulirschStoer(integrator), 1e-10) < 1e-8

    def test_increment_collection_switched_off_after_step(self, triple):
        system = ARChainSystem(triple)
        BulirschStoer().iterate(system, 0.01)
        before = system.increment.copy()
        system.drift(0.01)
        assert np.array_equal(system.increment, before)

    def test_archain_energy(self):
        assert energy_error(ARChainSystem, BulirschStoer(), 1e-12, orbits=2.0) < 1e-10

    def test_step_bookkeeping(self, triple):
        system = SimpleSystem(triple)
        iterator = BulirschStoer()
        iterator.set_rtol(1e-10)
        t0 = system.time
        h_next = iterator.iterate(system, 0.01)
        assert h_next > 0.0
        assert iterator.last_step > 0.0
        assert system.time == pytest.approx(t0 + iterator.last_step, rel=1e-12)
        assert iterator.last_error <= 1.0
        assert 0.0 <= iterator.reject_rate <= 1.0

    def test_oversized_first_step_is_shrunk(self, triple):
        system = SimpleSystem(triple)
        iterator = BulirschStoer()
        iterator.set_rtol(1e-12)
        iterator.iterate(system, 2.0)
        assert iterator.last_step < 2.0
        assert iterator.reject_num > 0

    def test_deterministic(self):
        results = []
        for _ in range(2):
            system = ARChainSystem(kepler_binary())
            integrate(system, BulirschStoer(), 0.5 * kepler_period(), 1e-10)
            results.append(system.write_to_scalar_array())
        assert np.array_equal(results[0], results[1])

    def test_failure_restores_state(self, triple):
        system = SimpleSystem(triple)
        iterator = BulirschStoer(max_try=1)
        iterator.set_rtol(1e-15)
        start = system.write_to_scalar_array()
        with pytest.raises(StepSizeError):
            iterator.iterate(system, 5.0)
        assert np.array_equal(system.write_to_scalar_array(), start)


class TestBisection:
    """Tests for the step-halving iterator."""

    def test_energy_error(self):
        iterator = BisectionOdeIterator(Symplectic4th(), WorstOffender())
        assert energy_error(SimpleSystem, iterator, 1e-9) < 1e-6

    def test_accepts_small_step_directly(self, triple):
        system = SimpleSystem(triple)
        iterator = BisectionOdeIterator(LeapFrogDKD(), WorstOffender(0.0, 1e-4))
        iterator.iterate(system, 1e-4)
        assert iterator.last_step == 1e-4
        assert iterator.last_error <= 1.0

    def test_gives_up_after_max_halvings(self, triple):
        system = SimpleSystem(triple)
        iterator = BisectionOdeIterator(LeapFrogDKD(), WorstOffender(0.0, 1e-15), max_halvings=2)
        start = system.write_to_scalar_array()
        with pytest.raises(StepSizeError):
            iterator.iterate(system, 1.0)
        assert np.array_equal(system.write_to_scalar_array(), start)


class TestIAS15:
    """Tests for the Gauss-Radau iterator."""

    def test_kepler_energy(self):
        assert energy_error(SimpleSystem, IAS15(GaussRadau()), 1e-9, orbits=2.0) < 1e-10

    def test_state_tolerance_leaves_epsilon(self):
        iterator = IAS15()
        iterator.set_atol(1e-3)
        iterator.set_rtol(1e-13)
        assert iterator.err_checker.rtol == IAS15.EPSILON
        assert iterator.err_checker.atol == 0.0

    def test_epsilon(self):
        assert IAS15(epsilon=1e-7).err_checker.rtol == 1e-7
        iterator = IAS15()
        iterator.set_epsilon(1e-8)
        assert iterator.err_checker.rtol == 1e-8
        with pytest.raises(ValueError):
            iterator.set_epsilon(0.0)
        with pytest.raises(ValueError):
            IAS15(epsilon=-1.0)

    @pytest.mark.parametrize("cls", [SimpleSystem, ARChainSystem])
    def test_simulator_with_default_run_args(self, cls):
        system = cls(kepler_binary())
        e0 = system.total_energy()
        stats = Simulator(system, IAS15()).run(RunArgs(end_time=kepler_period()))
        assert stats['final_time'] >= kepler_period()
        assert abs((system.total_energy() - e0) / e0) < 1e-9

    def test_step_adapts(self):
        system = SimpleSystem(kepler_binary())
        iterator = IAS15()
        steps = []
        h = 0.01
        while system.time < kepler_period():
            h = iterator.iterate(system, h)
            steps.append(iterator.last_step)
        # shorter steps near pericentre than at apocentre
        assert min(steps) < 0.5 * max(steps)
