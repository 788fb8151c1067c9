"""
Output callbacks for the simulator.

This module handles:
- Time series recording to HDF5 (`SnapshotRecorder`)
- Plain-text snapshots, one line per call (`TextWriter`)
- Emission cadence wrappers: every Δt (`TimeSlice`) or every N steps (`StepSlice`)
- Energy conservation monitoring while recording

All writers are callables taking the particle system, so they can be added
directly as simulator callbacks:

    writer = TextWriter('run.txt')
    args.add_post_step_operation(TimeSlice(writer, start=0.0, end=100.0))
"""

import threading
import warnings
from pathlib import Path
from typing import Callable

import h5py
import numpy as np

from archain import diagnostics


class TimeSlice:
    """
    Call `operation` each time the system time passes the next output time.

    Output times are start, start + Δ, ..., end with Δ = (end - start) / opt_num.
    """

    def __init__(self, operation: Callable, start: float, end: float, opt_num: int = 5000):
        self.operation = operation
        self.reset_slice_params(start, end, opt_num)

    def reset_slice_params(self, start: float, end: float, opt_num: int = 5000):
        if opt_num <= 0:
            raise ValueError(f"opt_num must be positive, got {opt_num}")
        self.opt_time = start
        self.end_time = end
        self.interval = (end - start) / opt_num

    def __call__(self, system):
        if system.time >= self.opt_time and self.opt_time <= self.end_time:
            self.operation(system)
            self.opt_time += self.interval


class StepSlice:
    """Call `operation` on every `step_interval`-th call (the first call included)."""

    def __init__(self, operation: Callable, step_interval: int = 1):
        self.operation = operation
        self.reset_slice_params(step_interval)

    def reset_slice_params(self, step_interval: int):
        if step_interval <= 0:
            raise ValueError(f"step_interval must be positive, got {step_interval}")
        self.step = 0
        self.step_interval = step_interval

    def __call__(self, system):
        if self.step % self.step_interval == 0:
            self.operation(system)
        self.step += 1


class TextWriter:
    """
    Write one text line per call: time, then per particle id, mass, position and velocity.

    Fields are joined with `separator` and printed with `precision` significant
    digits. Writes are serialised with a lock so one writer can be shared by
    several simulations running in threads.
    """

    def __init__(self, filepath: str, separator: str = ' ', precision: int = 16):
        self.filepath = Path(filepath)
        self.filepath.parent.mkdir(parents=True, exist_ok=True)
        self.separator = separator
        self.precision = precision
        self._lock = threading.Lock()
        self._file = open(self.filepath, 'w')

    def format_line(self, system) -> str:
        fmt = f"{{:.{self.precision}g}}"
        fields = [fmt.format(system.time)]
        pos = system.pos.data
        vel = system.vel.data
        for i in range(system.number):
            fields.append(str(int(system.particles.idn[i])))
            fields.append(fmt.format(system.mass[i]))
            fields.extend(fmt.format(v) for v in pos[:, i])
            fields.extend(fmt.format(v) for v in vel[:, i])
        return self.separator.join(fields)

    def __call__(self, system):
        line = self.format_line(system)
        with self._lock:
            self._file.write(line + '\n')

    def close(self):
        with self._lock:
            if not self._file.closed:
                self._file.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


class SnapshotRecorder:
    """
    Record snapshots of a particle system to an HDF5 file.

    File structure:
    /attrs: number, system type, units
    /mass (dataset) - (N,)
    /timeseries (group)
        /time (dataset) - (n_samples,)
        /positions (dataset) - (n_samples, N, 3)
        /velocities (dataset) - (n_samples, N, 3)
    /conservation (group)
        /total_energy (dataset) - (n_samples,)
        /energy_error (dataset) - relative to the first sample (n_samples,)
        /angular_momentum (dataset) - (n_samples, 3)

    Datasets grow by one row per call.

    Args:
        filepath: Output HDF5 path
        system: Particle system to be recorded (sets the particle count)
        energy_tolerance: Warn when the relative energy error exceeds this
            (None disables the check)
    """

    def __init__(self, filepath: str, system, energy_tolerance: float = None):
        self.filepath = Path(filepath)
        self.filepath.parent.mkdir(parents=True, exist_ok=True)
        self.energy_tolerance = energy_tolerance
        self.n_samples = 0
        self.initial_energy = None
        self._warned = False

        n = system.number
        self.file = h5py.File(str(self.filepath), 'w')
        self.file.attrs['number'] = n
        self.file.attrs['system_type'] = type(system).__name__
        self.file.attrs['units'] = system.units.name
        self.file.attrs['G'] = system.units.G
        self.file.attrs['c'] = system.units.c
        self.file.create_dataset('mass', data=system.mass)

        ts = self.file.create_group('timeseries')
        ts.create_dataset('time', shape=(0,), maxshape=(None,), dtype='f8', chunks=True)
        ts.create_dataset('positions', shape=(0, n, 3), maxshape=(None, n, 3), dtype='f8', chunks=True)
        ts.create_dataset('velocities', shape=(0, n, 3), maxshape=(None, n, 3), dtype='f8', chunks=True)

        cons = self.file.create_group('conservation')
        cons.create_dataset('total_energy', shape=(0,), maxshape=(None,), dtype='f8', chunks=True)
        cons.create_dataset('energy_error', shape=(0,), maxshape=(None,), dtype='f8', chunks=True)
        cons.create_dataset('angular_momentum', shape=(0, 3), maxshape=(None, 3), dtype='f8', chunks=True)

    def _append(self, name: str, value):
        dset = self.file[name]
        dset.resize(self.n_samples + 1, axis=0)
        dset[self.n_samples] = value

    def __call__(self, system):
        energy = system.total_energy()
        if self.initial_energy is None:
            self.initial_energy = energy
        if self.initial_energy != 0.0:
            energy_error = diagnostics.relative_energy_error(energy, self.initial_energy)
        else:
            energy_error = abs(energy)

        self._append('timeseries/time', system.time)
        self._append('timeseries/positions', system.pos.to_array())
        self._append('timeseries/velocities', system.vel.to_array())
        self._append('conservation/total_energy', energy)
        self._append('conservation/energy_error', energy_error)
        self._append('conservation/angular_momentum', diagnostics.angular_momentum(system))
        self.n_samples += 1

        if (self.energy_tolerance is not None and energy_error > self.energy_tolerance
                and not self._warned):
            warnings.warn(
                f"Energy conservation violated at t={system.time:.6g}: "
                f"relative error {energy_error:.3e} > {self.energy_tolerance:.1e}"
            )
            self._warned = True

    def energy_errors(self) -> np.ndarray:
        return self.file['conservation/energy_error'][:]

    def close(self):
        if self.file:
            self.file.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
