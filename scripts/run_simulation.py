"""
Main simulation runner script.

Usage:
    python scripts/run_simulation.py configs/sun_earth.yaml

This script:
1. Loads configuration from YAML file
2. Builds the particle system and ODE iterator
3. Runs the integration with progress bar
4. Records snapshots to HDF5 (if an output file is configured)
5. Prints a conservation summary
"""

import sys
import argparse
import time
from pathlib import Path

import h5py
import numpy as np

# Add src to path so we can import archain package
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from archain.config import SimulationParameters
from archain.initialization import build_simulation
from archain import diagnostics


def main():
    parser = argparse.ArgumentParser(
        description='Run an AR-chain N-body integration'
    )
    parser.add_argument(
        'config',
        type=str,
        help='Path to YAML configuration file'
    )
    parser.add_argument(
        '--output',
        type=str,
        default=None,
        help='Output HDF5 file path (default: from config)'
    )
    parser.add_argument(
        '--end-time',
        type=float,
        default=None,
        help='Override the configured end time'
    )
    parser.add_argument(
        '--profile',
        action='store_true',
        help='Enable profiling'
    )

    args = parser.parse_args()

    # Load configuration
    print(f"Loading configuration from {args.config}...")
    params = SimulationParameters.from_yaml(args.config)
    if args.end_time is not None:
        params.end_time = args.end_time

    messages = params.validate()
    for message in messages:
        print(f"  {message}")
    if any(m.startswith("ERROR") for m in messages):
        sys.exit(1)

    # Print configuration summary
    print("=" * 70)
    print(f"SIMULATION: {params.simulation_name}")
    print("=" * 70)
    print(f"Particles: {len(params.particles)}")
    print(f"Units: {params.units.name} (G={params.units.G:.6g}, c={params.units.c:.6g})")
    print(f"System: {params.system_type} (regularization: {params.regularization})")
    print(f"Extra forces: {', '.join(params.forces) if params.forces else 'none'}")
    print(f"Iterator: {params.iterator_type} / {params.integrator} / {params.error_checker}")
    print(f"Tolerances: atol={params.atol:.1e}, rtol={params.rtol:.1e}")
    print(f"Time span: [{params.start_time}, {params.end_time}]")
    print("=" * 70)
    print()

    print("Building simulation...")
    simulator, run_args = build_simulation(params, output_path=args.output)
    system = simulator.system
    initial_energy = system.total_energy()
    initial_momentum = diagnostics.total_momentum(system)
    initial_angular = diagnostics.angular_momentum(system)
    print(f"Initial energy: {initial_energy:.16e}")
    print()

    # Run simulation
    print("Starting simulation...")
    start_time = time.time()

    if args.profile:
        import cProfile
        import pstats
        profiler = cProfile.Profile()
        profiler.enable()

    stats = simulator.run(run_args)

    if args.profile:
        profiler.disable()
        profile_stats = pstats.Stats(profiler)
        profile_stats.sort_stats('cumulative')
        print("\n" + "=" * 70)
        print("PROFILING RESULTS (Top 20 functions)")
        print("=" * 70)
        profile_stats.print_stats(20)

    elapsed_time = time.time() - start_time

    print()
    print("=" * 70)
    print(f"Simulation completed in {elapsed_time:.1f} seconds ({stats['steps']} steps)")
    print("=" * 70)
    print()

    final_energy = system.total_energy()
    momentum_drift = np.linalg.norm(diagnostics.total_momentum(system) - initial_momentum)
    angular_drift = np.linalg.norm(diagnostics.angular_momentum(system) - initial_angular)

    print("=" * 70)
    print("QUICK RESULTS SUMMARY")
    print("=" * 70)
    print(f"Final time: {stats['final_time']:.16g}")
    print(f"Last recommended step: {stats['step_size']:.6g}")
    print(f"Relative energy error: {diagnostics.relative_energy_error(final_energy, initial_energy):.3e}")
    print(f"Momentum drift: {momentum_drift:.3e}")
    print(f"Angular momentum drift: {angular_drift:.3e}")

    recorder = simulator.recorder
    if recorder is not None:
        with h5py.File(str(recorder.filepath), 'r') as f:
            energies = f['conservation/total_energy'][:]
        rms = diagnostics.rms_relative_energy_error(energies, energies[0])
        print(f"Snapshots: {len(energies)}")
        print(f"RMS relative energy error: {rms:.3e}")
        print(f"Results saved to: {recorder.filepath}")
    print("=" * 70)


if __name__ == '__main__':
    main()
