"""
Build a ready-to-run simulation from `SimulationParameters`.

Wiring order:
1. Particle set from the configured records (optionally moved to the
   centre-of-mass frame)
2. Interaction with the configured extra forces and unit system
3. Particle system variant (simple / regularized / chain / archain)
4. ODE iterator with its integrator, error checker and step controller
5. RunArgs: end time, tolerances, progress bar and the snapshot recorder
"""

from typing import Tuple

from archain import diagnostics
from archain.config import SimulationParameters
from archain.error_checkers import make_error_checker
from archain.integrators import GaussRadau, make_symplectic_integrator
from archain.interaction import Interaction
from archain.ode_iterators import (
    BisectionOdeIterator,
    BulirschStoer,
    ConstOdeIterator,
    IAS15,
)
from archain.output import SnapshotRecorder, TimeSlice
from archain.particles import ParticleSet
from archain.regularization import ReguType
from archain.simulator import RunArgs, Simulator
from archain.step_controllers import make_step_controller
from archain.systems import ARChainSystem, ChainSystem, RegularizedSystem, SimpleSystem


def build_particles(params: SimulationParameters) -> ParticleSet:
    """Create the initial particle set; shifted to the COM frame if requested."""
    particles = ParticleSet(params.particles, time=params.start_time)
    if params.move_to_com:
        diagnostics.move_to_com(particles)
    return particles


def build_system(params: SimulationParameters, particles: ParticleSet = None):
    """
    Create the particle system variant named by `params.system_type`.

    Raises:
        ValueError: Unknown system type, regularization or force name
    """
    if particles is None:
        particles = build_particles(params)
    interaction = Interaction(params.forces, units=params.units)

    system_type = params.system_type
    if system_type == 'simple':
        return SimpleSystem(particles, interaction)
    if system_type == 'chain':
        return ChainSystem(particles, interaction)

    regu_type = ReguType.parse(params.regularization)
    if system_type == 'regularized':
        return RegularizedSystem(particles, interaction, regu_type=regu_type)
    if system_type == 'archain':
        return ARChainSystem(particles, interaction, regu_type=regu_type)
    raise ValueError(f"Unknown system type '{system_type}'")


def build_iterator(params: SimulationParameters):
    """
    Create the ODE iterator named by `params.iterator_type`.

    IAS15 always runs its own Gauss-Radau integrator and error measure,
    controlled by `params.epsilon` instead of atol/rtol; the symplectic
    integrator setting applies to the other iterators.
    """
    iterator_type = params.iterator_type
    if iterator_type == 'ias15':
        return IAS15(integrator=GaussRadau(), epsilon=params.epsilon)

    integrator = make_symplectic_integrator(params.integrator)
    if iterator_type == 'const':
        return ConstOdeIterator(integrator)

    err_checker = make_error_checker(params.error_checker, params.atol, params.rtol)
    if iterator_type == 'bisection':
        controller = make_step_controller(params.step_controller)
        return BisectionOdeIterator(integrator, err_checker, controller,
                                    max_halvings=params.max_halvings)
    if iterator_type == 'bulirsch-stoer':
        # None keeps the Bulirsch-Stoer specific safety factors
        controller = None if params.step_controller == 'pid' else make_step_controller(params.step_controller)
        return BulirschStoer(integrator, err_checker, controller)
    raise ValueError(f"Unknown iterator type '{iterator_type}'")


def build_simulation(params: SimulationParameters, output_path: str = None) -> Tuple[Simulator, RunArgs]:
    """
    Assemble the simulator and its run arguments.

    Args:
        params: Validated simulation parameters
        output_path: Override for params.output_file (None keeps the config value)

    Returns:
        (Simulator, RunArgs). If an output file is configured, a
        SnapshotRecorder is attached as a post-step TimeSlice and closed
        by a stop-point operation; it is also exposed as `simulator.recorder`.

    Raises:
        ValueError: If validation reports an error
    """
    errors = [m for m in params.validate() if m.startswith("ERROR")]
    if errors:
        raise ValueError("Invalid simulation parameters:\n  " + "\n  ".join(errors))

    system = build_system(params)
    iterator = build_iterator(params)
    simulator = Simulator(system, iterator)
    simulator.recorder = None

    args = RunArgs(
        end_time=params.end_time,
        step_size=params.step_size,
        atol=params.atol,
        rtol=params.rtol,
        show_progress=params.show_progress,
    )

    path = output_path if output_path is not None else params.output_file
    if path:
        recorder = SnapshotRecorder(path, system, energy_tolerance=1e3 * max(params.rtol, 1e-15))
        duration = params.end_time - params.start_time
        if params.output_interval > 0:
            opt_num = max(1, int(round(duration / params.output_interval)))
        else:
            opt_num = 5000
        # The same slice records the initial state and every output time after it
        sampler = TimeSlice(recorder, params.start_time, params.end_time, opt_num)
        args.add_start_point_operation(sampler)
        args.add_post_step_operation(sampler)
        args.add_stop_point_operation(lambda system: recorder.close())
        simulator.recorder = recorder

    return simulator, args
