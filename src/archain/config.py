"""
Configuration management for AR-chain simulations.

This module loads YAML configuration files into a `SimulationParameters`
dataclass. Example:

    simulation:
      name: sun_earth
      start_time: 0.0
      end_time: 1000.0
      step_size: 0.0          # 0 = derive from the free-fall time
      output_file: results/sun_earth.h5
      output_interval: 1.0    # time between recorded snapshots (0 = off)
      show_progress: true
    units: astronomical       # natural | astronomical | si, or {G: ..., c: ...}
    system:
      type: archain           # simple | regularized | chain | archain
      regularization: logH    # logH | TTL | none
      move_to_com: true
    forces: [pn1]             # pn1 | pn2 | pn2.5 | tidal
    iterator:
      type: bulirsch-stoer    # const | bisection | bulirsch-stoer | ias15
      integrator: leapfrog    # leapfrog | symplectic4 | symplectic6
      error_checker: worst-offender
      step_controller: pid
      atol: 0.0
      rtol: 1.0e-13
      max_halvings: 12
      epsilon: 1.0e-9         # IAS15 b6 tolerance (ias15 ignores atol/rtol)
    particles:
      - {mass: 1.0, pos: [0, 0, 0], vel: [0, 0, 0]}
      - {mass: 3.003e-6, pos: [1, 0, 0], vel: [0, 6.283185307, 0]}
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, List, Optional

import yaml

from archain.constants import Units
from archain.particles import Particle

SYSTEM_TYPES = ('simple', 'regularized', 'chain', 'archain')
ITERATOR_TYPES = ('const', 'bisection', 'bulirsch-stoer', 'ias15')


@dataclass
class SimulationParameters:
    """Container for all simulation parameters."""

    # Metadata
    simulation_name: str = "archain"
    output_file: Optional[str] = None
    output_interval: float = 0.0
    show_progress: bool = False

    # Time
    start_time: float = 0.0
    end_time: float = 0.0
    step_size: float = 0.0

    # Physics
    units: Units = field(default_factory=Units.natural)
    system_type: str = "archain"
    regularization: str = "logH"
    move_to_com: bool = True
    forces: List[str] = field(default_factory=list)

    # ODE iterator
    iterator_type: str = "bulirsch-stoer"
    integrator: str = "leapfrog"
    error_checker: str = "worst-offender"
    step_controller: str = "pid"
    atol: float = 0.0
    rtol: float = 1e-13
    max_halvings: int = 12
    epsilon: float = 1e-9

    # Initial conditions
    particles: List[Particle] = field(default_factory=list)

    def validate(self) -> list:
        """
        Perform sanity checks on configuration parameters.

        Returns:
            List of warning/error messages. Empty list if all checks pass.
        """
        messages = []

        if self.system_type not in SYSTEM_TYPES:
            messages.append(f"ERROR: system type must be one of {SYSTEM_TYPES}, got '{self.system_type}'")

        if self.iterator_type not in ITERATOR_TYPES:
            messages.append(f"ERROR: iterator type must be one of {ITERATOR_TYPES}, got '{self.iterator_type}'")

        if len(self.particles) == 0:
            messages.append("ERROR: at least one particle is required")

        for i, p in enumerate(self.particles):
            if p.mass <= 0:
                messages.append(f"ERROR: particle {i} mass must be positive, got {p.mass}")
            if p.k_apsidal != 0 and p.radius <= 0:
                messages.append(f"WARNING: particle {i} has a tidal constant but no radius")

        positions = [tuple(p.pos) for p in self.particles]
        if len(set(positions)) != len(positions):
            messages.append("ERROR: two particles share the same position")

        if self.end_time <= self.start_time:
            messages.append(f"ERROR: end_time ({self.end_time}) must be after start_time ({self.start_time})")

        if self.step_size < 0:
            messages.append(f"ERROR: step_size must be non-negative, got {self.step_size}")

        if self.atol < 0 or self.rtol < 0:
            messages.append("ERROR: tolerances must be non-negative")
        elif self.atol == 0 and self.rtol == 0:
            messages.append("ERROR: atol and rtol cannot both be zero")

        if self.epsilon <= 0:
            messages.append(f"ERROR: epsilon must be positive, got {self.epsilon}")

        if self.rtol != 0 and self.rtol < 1e-16:
            messages.append(f"WARNING: rtol ({self.rtol:.1e}) is below double precision")

        if 'tidal' in self.forces and not any(p.k_apsidal != 0 for p in self.particles):
            messages.append("WARNING: tidal force enabled but no particle has k_apsidal set")

        if self.iterator_type == 'const' and self.step_size == 0:
            messages.append("WARNING: const iterator with derived step size; results depend on the free-fall time")

        if self.output_interval < 0:
            messages.append(f"ERROR: output_interval must be non-negative, got {self.output_interval}")

        return messages

    @classmethod
    def from_yaml(cls, filepath: str) -> 'SimulationParameters':
        """
        Load configuration from a YAML file.

        Args:
            filepath: Path to YAML configuration file

        Returns:
            SimulationParameters object

        Raises:
            FileNotFoundError: If config file doesn't exist
            ValueError: If config is invalid
        """
        config_path = Path(filepath)
        if not config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {filepath}")

        with open(config_path, 'r') as f:
            config = yaml.safe_load(f)

        if not isinstance(config, dict):
            raise ValueError(f"Configuration file {filepath} must contain a mapping")

        return cls.from_dict(config)

    @classmethod
    def from_dict(cls, config: dict) -> 'SimulationParameters':
        """Build parameters from an already parsed configuration mapping."""

        def to_float(value: Any) -> float:
            """Convert value to float, handling YAML quirks with scientific notation."""
            return float(value)

        def to_bool(value: Any) -> bool:
            if isinstance(value, str):
                return value.lower() in ('true', 'yes', '1')
            return bool(value)

        def to_vector(value: Any, name: str) -> list:
            if value is None:
                return [0.0, 0.0, 0.0]
            if len(value) != 3:
                raise ValueError(f"{name} must have three components, got {value}")
            return [to_float(v) for v in value]

        sim = config.get('simulation', {}) or {}
        system = config.get('system', {}) or {}
        iterator = config.get('iterator', {}) or {}

        units_cfg = config.get('units', 'natural')
        if isinstance(units_cfg, str):
            units = Units.from_name(units_cfg)
        elif isinstance(units_cfg, dict):
            try:
                units = Units(G=to_float(units_cfg['G']), c=to_float(units_cfg['c']),
                              name=str(units_cfg.get('name', 'custom')))
            except KeyError as exc:
                raise ValueError(f"Custom units need G and c, missing {exc}")
        else:
            raise ValueError(f"units must be a name or a mapping, got {units_cfg!r}")

        if 'particles' not in config:
            raise ValueError("Configuration has no 'particles' section")

        particles = []
        for i, record in enumerate(config['particles']):
            if 'mass' not in record:
                raise ValueError(f"particle {i}: 'mass' is required")
            particles.append(Particle(
                mass=to_float(record['mass']),
                pos=to_vector(record.get('pos'), f"particle {i} pos"),
                vel=to_vector(record.get('vel'), f"particle {i} vel"),
                radius=to_float(record.get('radius', 0.0)),
                k_apsidal=to_float(record.get('k_apsidal', 0.0)),
                tau=to_float(record.get('tau', 0.0)),
                idn=int(record.get('id', i)),
            ))

        forces = config.get('forces', []) or []
        if isinstance(forces, str):
            forces = [forces]

        return cls(
            simulation_name=str(sim.get('name', 'archain')),
            output_file=sim.get('output_file'),
            output_interval=to_float(sim.get('output_interval', 0.0)),
            show_progress=to_bool(sim.get('show_progress', False)),
            start_time=to_float(sim.get('start_time', 0.0)),
            end_time=to_float(sim.get('end_time', 0.0)),
            step_size=to_float(sim.get('step_size', 0.0)),
            units=units,
            system_type=str(system.get('type', 'archain')).lower(),
            regularization=str(system.get('regularization', 'logH')),
            move_to_com=to_bool(system.get('move_to_com', True)),
            forces=[str(f).lower() for f in forces],
            iterator_type=str(iterator.get('type', 'bulirsch-stoer')).lower(),
            integrator=str(iterator.get('integrator', 'leapfrog')).lower(),
            error_checker=str(iterator.get('error_checker', 'worst-offender')).lower(),
            step_controller=str(iterator.get('step_controller', 'pid')).lower(),
            atol=to_float(iterator.get('atol', 0.0)),
            rtol=to_float(iterator.get('rtol', 1e-13)),
            max_halvings=int(iterator.get('max_halvings', 12)),
            epsilon=to_float(iterator.get('epsilon', 1e-9)),
            particles=particles,
        )

    def __repr__(self):
        return (f"SimulationParameters({self.simulation_name!r}, {len(self.particles)} particles, "
                f"system={self.system_type}/{self.regularization}, iterator={self.iterator_type}, "
                f"t=[{self.start_time}, {self.end_time}])")
