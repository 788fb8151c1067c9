"""
Tests for the Simulator driver and its RunArgs callbacks.
"""

import warnings

import numpy as np
import pytest

from archain.ode_iterators import BulirschStoer, ConstOdeIterator
from archain.simulator import RunArgs, Simulator
from archain.systems import ARChainSystem, SimpleSystem

from conftest import circular_binary, circular_relative_position


class Recorder:
    """Callback collecting the times it is called at."""

    def __init__(self):
        self.times = []

    def __call__(self, system):
        self.times.append(system.time)


class TestRunArgs:
    """Tests for run argument bookkeeping."""

    def test_defaults(self):
        args = RunArgs()
        assert args.end_time is None
        assert args.step_size == 0.0
        assert args.pre_step_operations == []

    def test_numeric_stop_condition(self, triple):
        args = RunArgs()
        args.add_stop_condition(0.5)
        system = SimpleSystem(triple)
        assert not args.stop_conditions[0](system)
        system.time = 0.5
        assert args.stop_conditions[0](system)


class TestSimulator:
    """Tests for the main loop."""

    def test_callback_order_and_counts(self, binary):
        simulator = Simulator(SimpleSystem(binary), ConstOdeIterator())
        calls = []
        args = RunArgs(end_time=0.1, step_size=0.01)
        args.add_start_point_operation(lambda s: calls.append('start'))
        args.add_pre_step_operation(lambda s: calls.append('pre'))
        args.add_post_step_operation(lambda s: calls.append('post'))
        args.add_stop_point_operation(lambda s: calls.append('stop'))

        stats = simulator.run(args)

        assert calls[0] == 'start' and calls[-1] == 'stop'
        assert calls.count('pre') == calls.count('post') == stats['steps']
        assert calls[1:3] == ['pre', 'post']
        assert stats['final_time'] >= 0.1
        assert stats['steps'] in (10, 11)

    def test_requires_end_or_condition(self, binary):
        simulator = Simulator(SimpleSystem(binary), ConstOdeIterator())
        with pytest.raises(ValueError):
            simulator.run(RunArgs(step_size=0.01))

    def test_end_before_start_warns(self, binary):
        system = SimpleSystem(binary, time=1.0)
        simulator = Simulator(system, ConstOdeIterator())
        with pytest.warns(UserWarning):
            stats = simulator.run(RunArgs(end_time=0.5, step_size=0.01))
        assert stats['steps'] == 0
        assert system.time == 1.0

    def test_stop_condition(self, binary):
        simulator = Simulator(SimpleSystem(binary), ConstOdeIterator())
        args = RunArgs(step_size=0.01)
        args.add_stop_condition(lambda s: s.time >= 0.05)
        stats = simulator.run(args)
        assert 0.05 <= stats['final_time'] < 0.07

    def test_derived_step_size(self, binary):
        system = SimpleSystem(binary)
        simulator = Simulator(system, ConstOdeIterator())
        expected = 0.01 * system.step_scale()
        stats = simulator.run(RunArgs(end_time=expected * 3.5))
        assert stats['step_size'] == pytest.approx(expected)
        assert stats['steps'] == 4

    def test_tolerances_forwarded(self, binary):
        iterator = BulirschStoer()
        simulator = Simulator(SimpleSystem(binary), iterator)
        simulator.run(RunArgs(end_time=0.01, atol=1e-20, rtol=1e-11))
        assert iterator.err_checker.atol == 1e-20
        assert iterator.err_checker.rtol == 1e-11

    def test_progress_bar(self, binary):
        simulator = Simulator(SimpleSystem(binary), ConstOdeIterator())
        stats = simulator.run(RunArgs(end_time=0.05, step_size=0.01, show_progress=True))
        assert stats['final_time'] >= 0.05

    def test_circular_orbit_phase(self):
        """AR-chain + Bulirsch-Stoer follows the analytic circular orbit."""
        system = ARChainSystem(circular_binary())
        simulator = Simulator(system, BulirschStoer())
        end = 2.0 * np.pi
        args = RunArgs(end_time=end, rtol=1e-12)
        stats = simulator.run(args)
        rel = system.pos[1].to_array() - system.pos[0].to_array()
        expected = circular_relative_position(stats['final_time'])
        assert np.allclose(rel, expected, atol=1e-8)

    def test_no_warning_for_normal_run(self, binary):
        simulator = Simulator(SimpleSystem(binary), ConstOdeIterator())
        with warnings.catch_warnings():
            warnings.simplefilter("error", UserWarning)
            simulator.run(RunArgs(end_time=0.02, step_size=0.01))
