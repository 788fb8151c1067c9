"""
Force evaluation for particle sets and particle systems.

An `Interaction` always contains Newtonian gravity and optionally a list of
extra forces. Each extra force declares whether it depends on velocity; the
interaction aggregates those declarations into two capability flags fixed at
construction:

- `is_vel_dep`: at least one extra force is velocity-dependent. Particle
  systems then allocate auxiliary-velocity buffers and use the three-stage
  auxiliary-velocity kick.
- `has_extra_vel_indep`: at least one extra force is velocity-independent.

Forces are evaluated over a pair table (see `archain.forces`). The table is
built from chain-relative coordinates automatically whenever the particle
container exposes `chain_index`, `chain_pos` and `chain_vel`.
"""

from collections import namedtuple
from typing import Optional, Sequence

from archain import forces
from archain.constants import DEFAULT_UNITS, Units
from archain.coords import Coords

PairTable = namedtuple('PairTable', ['pi', 'pj', 'dr', 'dv', 'vel'])


def build_pair_table(particles, aux: bool = False) -> PairTable:
    """
    Build the pair table of a particle container.

    Args:
        particles: ParticleSet or particle system
        aux: Use the auxiliary velocities (`aux_vel` / `chain_aux_vel`)
            instead of the real ones

    Returns:
        PairTable with index arrays, separations, relative velocities and the
        velocity array the table was built from
    """
    vel = particles.aux_vel if aux else particles.vel
    index = getattr(particles, 'chain_index', None)
    if index is None:
        pi, pj, dr, dv = forces.absolute_pairs(particles.pos.data, vel.data)
    else:
        chain_vel = particles.chain_aux_vel if aux else particles.chain_vel
        pi, pj, dr, dv = forces.chain_pairs(index, particles.pos.data, vel.data,
                                            particles.chain_pos.data, chain_vel.data)
    return PairTable(pi, pj, dr, dv, vel.data)


class Force:
    """Extra (non-Newtonian) force. Subclasses implement `add_acc_to`."""

    name = ''
    vel_dependent = False

    def add_acc_to(self, particles, pairs: PairTable, acc: Coords, units: Units):
        raise NotImplementedError

    def __repr__(self):
        return f"{type(self).__name__}()"


class PostNewtonian1(Force):
    """First post-Newtonian correction."""

    name = 'pn1'
    vel_dependent = True

    def add_acc_to(self, particles, pairs, acc, units):
        forces.pn1_acc(particles.mass, pairs.vel, pairs.pi, pairs.pj, pairs.dr, pairs.dv,
                       units.G, units.c, acc.data)


class PostNewtonian2(Force):
    """Second post-Newtonian correction."""

    name = 'pn2'
    vel_dependent = True

    def add_acc_to(self, particles, pairs, acc, units):
        forces.pn2_acc(particles.mass, pairs.vel, pairs.pi, pairs.pj, pairs.dr, pairs.dv,
                       units.G, units.c, acc.data)


class PostNewtonian2p5(Force):
    """Radiation-reaction (2.5PN) term."""

    name = 'pn2.5'
    vel_dependent = True

    def add_acc_to(self, particles, pairs, acc, units):
        forces.pn2p5_acc(particles.mass, pairs.pi, pairs.pj, pairs.dr, pairs.dv,
                         units.G, units.c, acc.data)


class Tidal(Force):
    """Constant-time-lag equilibrium tide; needs radius, k_apsidal and tau per body."""

    name = 'tidal'
    vel_dependent = True

    def add_acc_to(self, particles, pairs, acc, units):
        forces.tidal_acc(particles.mass, particles.radius, particles.k_apsidal, particles.tau,
                         pairs.pi, pairs.pj, pairs.dr, pairs.dv, units.G, acc.data)


FORCES = {cls.name: cls for cls in (PostNewtonian1, PostNewtonian2, PostNewtonian2p5, Tidal)}


def make_force(name: str) -> Force:
    """
    Create an extra force from its configuration name.

    Raises:
        ValueError: If the name is unknown
    """
    try:
        return FORCES[name.lower()]()
    except KeyError:
        raise ValueError(f"Unknown force '{name}', expected one of {sorted(FORCES)}")


class Accelerations:
    """
    Acceleration buffers of one particle system.

    `newtonian_acc`, `tot_vel_indep_acc` and `acc` always exist.
    `ext_vel_indep_acc` exists iff the interaction has velocity-independent
    extra forces; `ext_vel_dep_acc` and `aux_vel_dep_acc` (the velocity-
    dependent part evaluated at the auxiliary velocity) exist iff the
    interaction is velocity-dependent. Absent buffers are None.
    """

    def __init__(self, n: int, vel_dep: bool, extra_vel_indep: bool):
        self.acc = Coords(n)
        self.newtonian_acc = Coords(n)
        self.tot_vel_indep_acc = Coords(n)
        self.ext_vel_indep_acc = Coords(n) if extra_vel_indep else None
        self.ext_vel_dep_acc = Coords(n) if vel_dep else None
        self.aux_vel_dep_acc = Coords(n) if vel_dep else None


class Interaction:
    """
    Newtonian gravity plus optional extra forces.

    Args:
        extra_forces: Force instances or force names ('pn1', 'pn2', 'pn2.5', 'tidal')
        units: Unit system providing G and c
    """

    def __init__(self, extra_forces: Sequence = (), units: Units = DEFAULT_UNITS):
        self.forces = [make_force(f) if isinstance(f, str) else f for f in extra_forces]
        self.units = units
        self._vel_dep_forces = [f for f in self.forces if f.vel_dependent]
        self._vel_indep_forces = [f for f in self.forces if not f.vel_dependent]

    @property
    def is_vel_dep(self) -> bool:
        return bool(self._vel_dep_forces)

    @property
    def has_extra_vel_indep(self) -> bool:
        return bool(self._vel_indep_forces)

    def make_accelerations(self, n: int) -> Accelerations:
        return Accelerations(n, self.is_vel_dep, self.has_extra_vel_indep)

    def eval_newtonian_acc(self, particles, acc: Coords, pairs: Optional[PairTable] = None):
        """Overwrite `acc` with the Newtonian acceleration."""
        if pairs is None:
            pairs = build_pair_table(particles)
        acc.set_zero()
        forces.newtonian_acc(particles.mass, pairs.pi, pairs.pj, pairs.dr, self.units.G, acc.data)

    def eval_extra_vel_indep_acc(self, particles, acc: Coords, pairs: Optional[PairTable] = None):
        """Overwrite `acc` with the sum of the velocity-independent extra forces."""
        acc.set_zero()
        if not self._vel_indep_forces:
            return
        if pairs is None:
            pairs = build_pair_table(particles)
        for force in self._vel_indep_forces:
            force.add_acc_to(particles, pairs, acc, self.units)

    def eval_extra_vel_dep_acc(self, particles, acc: Coords, aux: bool = False):
        """
        Overwrite `acc` with the sum of the velocity-dependent extra forces.

        Args:
            particles: Particle container
            acc: Output buffer
            aux: Evaluate at the auxiliary velocities instead of the real ones
        """
        acc.set_zero()
        if not self._vel_dep_forces:
            return
        pairs = build_pair_table(particles, aux=aux)
        for force in self._vel_dep_forces:
            force.add_acc_to(particles, pairs, acc, self.units)

    def eval_acc(self, particles, acc: Optional[Coords] = None) -> Coords:
        """
        Total acceleration of every particle at its current velocity.

        Args:
            particles: Particle container
            acc: Optional output buffer; allocated when not given

        Returns:
            Coords with the total acceleration
        """
        if acc is None:
            acc = Coords(len(particles.mass))
        pairs = build_pair_table(particles)
        acc.set_zero()
        forces.newtonian_acc(particles.mass, pairs.pi, pairs.pj, pairs.dr, self.units.G, acc.data)
        for force in self.forces:
            force.add_acc_to(particles, pairs, acc, self.units)
        return acc

    def __repr__(self):
        return f"Interaction(forces={self.forces!r}, units={self.units.name})"
