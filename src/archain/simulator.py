"""
Simulation driver.

`Simulator` owns one particle system and one ODE iterator and runs the main
loop described by a `RunArgs`:

1. Start-point operations run once.
2. While time < end_time and no stop condition fires:
   pre-step operations -> system.pre_iter_process() -> iterator.iterate()
   -> system.post_iter_process() -> post-step operations
3. Stop-point operations run once.

Callbacks are plain callables taking the particle system. The loop is
synchronous; stop conditions are polled once per macro step.
"""

import math
import warnings
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from tqdm import tqdm


@dataclass
class RunArgs:
    """
    Run configuration and callbacks.

    step_size = 0 lets the simulator derive the first step from the system's
    shortest free-fall time. end_time = None requires at least one stop
    condition.
    """

    end_time: Optional[float] = None
    step_size: float = 0.0
    atol: float = 0.0
    rtol: float = 1e-13
    show_progress: bool = False
    start_point_operations: List[Callable] = field(default_factory=list)
    pre_step_operations: List[Callable] = field(default_factory=list)
    post_step_operations: List[Callable] = field(default_factory=list)
    stop_point_operations: List[Callable] = field(default_factory=list)
    stop_conditions: List[Callable] = field(default_factory=list)

    def add_start_point_operation(self, operation: Callable):
        self.start_point_operations.append(operation)

    def add_pre_step_operation(self, operation: Callable):
        self.pre_step_operations.append(operation)

    def add_post_step_operation(self, operation: Callable):
        self.post_step_operations.append(operation)

    def add_stop_point_operation(self, operation: Callable):
        self.stop_point_operations.append(operation)

    def add_stop_condition(self, condition):
        """
        Add a stop condition: a callable returning True to stop, or a time.

        A number t is shorthand for `lambda system: system.time >= t`.
        """
        if callable(condition):
            self.stop_conditions.append(condition)
        else:
            stop_time = float(condition)
            self.stop_conditions.append(lambda system: system.time >= stop_time)


class Simulator:
    """
    Args:
        system: Particle system (SimpleSystem, RegularizedSystem, ChainSystem, ARChainSystem)
        iterator: ODE iterator
    """

    def __init__(self, system, iterator):
        self.system = system
        self.iterator = iterator
        self.step_count = 0
        self.step_size = 0.0

    def _should_stop(self, args: RunArgs) -> bool:
        if args.end_time is not None and not self.system.time < args.end_time:
            return True
        return any(condition(self.system) for condition in args.stop_conditions)

    def run(self, args: RunArgs) -> dict:
        """
        Integrate until the end time or a stop condition.

        Args:
            args: Run configuration

        Returns:
            Dictionary with run statistics:
            - final_time: Physical time at exit
            - steps: Number of macro steps taken
            - step_size: Step size recommended for a continuation

        Raises:
            ValueError: If neither an end time nor a stop condition is given
        """
        system = self.system
        if args.end_time is None and not args.stop_conditions:
            raise ValueError("RunArgs needs an end_time or at least one stop condition")

        if args.end_time is not None and args.end_time <= system.time:
            warnings.warn(
                f"End time {args.end_time:.16g} is not after the start time {system.time:.16g}; "
                f"no step will be taken"
            )

        if args.step_size > 0.0:
            step_size = args.step_size
        else:
            step_size = 0.01 * system.step_scale()
            if not math.isfinite(step_size) or step_size <= 0.0:
                raise ValueError("Cannot derive an initial step size; set RunArgs.step_size")

        self.iterator.set_atol(args.atol)
        self.iterator.set_rtol(args.rtol)

        for operation in args.start_point_operations:
            operation(system)

        pbar = None
        if args.show_progress and args.end_time is not None:
            start_time = system.time
            pbar = tqdm(total=args.end_time - start_time, desc="Integrating", unit="time")

        while not self._should_stop(args):
            for operation in args.pre_step_operations:
                operation(system)

            system.pre_iter_process()
            step_size = self.iterator.iterate(system, step_size)
            system.post_iter_process()
            self.step_count += 1

            for operation in args.post_step_operations:
                operation(system)

            if pbar is not None:
                pbar.n = min(system.time, args.end_time) - start_time
                pbar.refresh()

        if pbar is not None:
            pbar.close()

        for operation in args.stop_point_operations:
            operation(system)

        self.step_size = step_size
        return {
            'final_time': system.time,
            'steps': self.step_count,
            'step_size': step_size,
        }
