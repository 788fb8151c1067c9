"""
Particle systems: the drift/kick state machine integrated by the ODE iterators.

Four variants compose a particle set with an interaction and, optionally,
regularization and chain coordinates:

- SimpleSystem:        absolute coordinates, physical time
- RegularizedSystem:   absolute coordinates, logH/TTL time transformation
- ChainSystem:         chain coordinates, physical time
- ARChainSystem:       chain coordinates + time transformation (AR-chain)

Common operations:
- drift(h): advance time and positions by the drift weight times h
- kick(h): advance velocities by the kick weight times h
- evaluate_acc(): total acceleration at the current state
- pre_iter_process() / post_iter_process(): step-boundary hooks
- write_to_scalar_array() / read_from_scalar_array(): flat state vector
  [time, positions, velocities, (aux velocities), (omega, bindE)] used by the
  adaptive iterators; chain systems store chain vectors instead of absolute ones
- evaluate_general_derivative(): d(state)/ds of that vector
- collect_increment() / clear_increment() / increment: while collecting,
  every drift/kick also adds its change to a compensated flat increment
  laid out like the state vector. The Bulirsch-Stoer iterator extrapolates
  these increments, so rounding of the large state values during substeps
  never reaches the result.

The kick algorithm is chosen once at construction from the interaction's
`is_vel_dep` flag:

Velocity-independent kick
    One force evaluation and one velocity update. ω/bindE are advanced by half
    the kick before and half after the velocity update.

Velocity-dependent kick (auxiliary velocity)
    1. evaluate velocity-independent accelerations
    2. velocity-dependent part at the real velocity; aux velocity += ½ step
    3. velocity-dependent part at the aux velocity; real velocity += full step
       (ω/bindE advanced here with the aux velocity)
    4. velocity-dependent part at the new real velocity; aux velocity += ½ step
"""

import numpy as np

from archain import chain
from archain import diagnostics
from archain.coords import Coords
from archain.interaction import Interaction
from archain.particles import ParticleSet
from archain.regularization import Regularization, ReguType


def _sum_into(out: Coords, a: Coords, b: Coords) -> Coords:
    np.add(a.data, b.data, out=out.data)
    return out


class SimpleSystem:
    """
    Absolute coordinates, physical time.

    Args:
        particles: ParticleSet or sequence of Particle records (copied)
        interaction: Force evaluator; Newtonian gravity only when None
        time: Start time; defaults to the particle set's time
    """

    chained = False
    regularized = False

    def __init__(self, particles, interaction: Interaction = None, time: float = None):
        if isinstance(particles, ParticleSet):
            particles = particles.copy()
        else:
            particles = ParticleSet(particles)
        if time is not None:
            particles.time = float(time)

        self.particles = particles
        self.interaction = interaction if interaction is not None else Interaction()
        self.units = self.interaction.units
        self.accels = self.interaction.make_accelerations(particles.number)
        self.aux_vel = particles.vel.copy() if self.interaction.is_vel_dep else None
        self._collecting = False
        self._increment = None
        self._increment_comp = None

        if self.interaction.is_vel_dep:
            self._kick = self._kick_vel_dep
        else:
            self._kick = self._kick_vel_indep

        self._setup_coordinates()

    # ------------------------------------------------------------------
    # Particle accessors
    # ------------------------------------------------------------------

    @property
    def number(self) -> int:
        return self.particles.number

    @property
    def mass(self) -> np.ndarray:
        return self.particles.mass

    @property
    def radius(self) -> np.ndarray:
        return self.particles.radius

    @property
    def k_apsidal(self) -> np.ndarray:
        return self.particles.k_apsidal

    @property
    def tau(self) -> np.ndarray:
        return self.particles.tau

    @property
    def pos(self) -> Coords:
        return self.particles.pos

    @property
    def vel(self) -> Coords:
        return self.particles.vel

    @property
    def time(self) -> float:
        return self.particles.time

    @time.setter
    def time(self, value: float):
        self.particles.time = float(value)

    # ------------------------------------------------------------------
    # Energies
    # ------------------------------------------------------------------

    def kinetic_energy(self) -> float:
        return diagnostics.kinetic_energy(self)

    def potential_energy(self) -> float:
        return diagnostics.potential_energy(self, self.units)

    def total_energy(self) -> float:
        return self.kinetic_energy() + self.potential_energy()

    def capital_omega(self) -> float:
        """-U, the TTL/logH kick weight denominator."""
        return -self.potential_energy()

    def step_scale(self) -> float:
        """Characteristic step length in this system's integration variable."""
        return diagnostics.min_free_fall_time(self, self.units)

    # ------------------------------------------------------------------
    # Coordinate hooks (absolute)
    # ------------------------------------------------------------------

    def _setup_coordinates(self):
        pass

    def _state_coords(self):
        coords = [self.pos, self.vel]
        if self.aux_vel is not None:
            coords.append(self.aux_vel)
        return coords

    def _advance_pos(self, phy_time: float):
        self._advance_coords(self.pos, self.vel, phy_time, 0)

    def _advance_vel(self, acc: Coords, phy_time: float):
        self._advance_coords(self.vel, acc, phy_time, 1)

    def _advance_aux_vel(self, acc: Coords, phy_time: float):
        self._advance_coords(self.aux_vel, acc, phy_time, 2)

    def _advance_coords(self, coords: Coords, rate: Coords, phy_time: float, block: int):
        """`coords += rate * phy_time`; `block` is the slot in the flat state (0 pos, 1 vel, 2 aux vel)."""
        delta = rate.data * phy_time
        coords.data += delta
        if self._collecting:
            size = 3 * self.number
            start = 1 + block * size
            self._accumulate(slice(start, start + size), delta.reshape(-1))

    def _pos_derivative(self) -> Coords:
        return self.vel

    def _vel_derivative(self, acc: Coords) -> Coords:
        return acc

    # ------------------------------------------------------------------
    # Time-transformation hooks (physical time)
    # ------------------------------------------------------------------

    def _pos_phy_time(self, step_size: float) -> float:
        return step_size

    def _vel_phy_time(self, step_size: float) -> float:
        return step_size

    def _advance_regularization(self, vel: Coords, ext_acc, phy_time: float):
        pass

    # ------------------------------------------------------------------
    # Force evaluation
    # ------------------------------------------------------------------

    def evaluate_vel_indep_acc(self):
        """Newtonian plus velocity-independent extra accelerations."""
        accels = self.accels
        self.interaction.eval_newtonian_acc(self, accels.newtonian_acc)
        if accels.ext_vel_indep_acc is not None:
            self.interaction.eval_extra_vel_indep_acc(self, accels.ext_vel_indep_acc)
            _sum_into(accels.tot_vel_indep_acc, accels.newtonian_acc, accels.ext_vel_indep_acc)
        else:
            accels.tot_vel_indep_acc.assign(accels.newtonian_acc)

    def evaluate_acc(self) -> Coords:
        """Total acceleration at the current positions and real velocities."""
        self.evaluate_vel_indep_acc()
        accels = self.accels
        if accels.ext_vel_dep_acc is not None:
            self.interaction.eval_extra_vel_dep_acc(self, accels.ext_vel_dep_acc)
            _sum_into(accels.acc, accels.tot_vel_indep_acc, accels.ext_vel_dep_acc)
        else:
            accels.acc.assign(accels.tot_vel_indep_acc)
        return accels.acc

    def _external_acc(self) -> Coords:
        """Sum of all extra (non-Newtonian) accelerations from the last `evaluate_acc`."""
        accels = self.accels
        if accels.ext_vel_indep_acc is None:
            return accels.ext_vel_dep_acc
        if accels.ext_vel_dep_acc is None:
            return accels.ext_vel_indep_acc
        return _sum_into(Coords(self.number), accels.ext_vel_indep_acc, accels.ext_vel_dep_acc)

    # ------------------------------------------------------------------
    # Drift / kick
    # ------------------------------------------------------------------

    def drift(self, step_size: float):
        """Advance time and positions at constant velocity."""
        phy_time = self._pos_phy_time(step_size)
        self.particles.time += phy_time
        if self._collecting:
            self._accumulate(slice(0, 1), phy_time)
        self._advance_pos(phy_time)

    def kick(self, step_size: float):
        """Advance velocities at constant positions."""
        self._kick(step_size)

    def _kick_vel_indep(self, step_size: float):
        phy_time = self._vel_phy_time(step_size)
        half = 0.5 * phy_time
        accels = self.accels
        self.evaluate_vel_indep_acc()
        self._advance_regularization(self.vel, accels.ext_vel_indep_acc, half)
        self._advance_vel(accels.tot_vel_indep_acc, phy_time)
        self._advance_regularization(self.vel, accels.ext_vel_indep_acc, half)

    def _kick_vel_dep(self, step_size: float):
        phy_time = self._vel_phy_time(step_size)
        half = 0.5 * phy_time
        accels = self.accels
        interaction = self.interaction

        self.evaluate_vel_indep_acc()

        interaction.eval_extra_vel_dep_acc(self, accels.ext_vel_dep_acc)
        self._advance_aux_vel(_sum_into(accels.acc, accels.tot_vel_indep_acc, accels.ext_vel_dep_acc), half)

        interaction.eval_extra_vel_dep_acc(self, accels.aux_vel_dep_acc, aux=True)
        if accels.ext_vel_indep_acc is not None:
            ext_acc = _sum_into(Coords(self.number), accels.ext_vel_indep_acc, accels.aux_vel_dep_acc)
        else:
            ext_acc = accels.aux_vel_dep_acc
        self._advance_regularization(self.aux_vel, ext_acc, phy_time)
        self._advance_vel(_sum_into(accels.acc, accels.tot_vel_indep_acc, accels.aux_vel_dep_acc), phy_time)

        interaction.eval_extra_vel_dep_acc(self, accels.ext_vel_dep_acc)
        self._advance_aux_vel(_sum_into(accels.acc, accels.tot_vel_indep_acc, accels.ext_vel_dep_acc), half)

    # ------------------------------------------------------------------
    # Step-boundary hooks
    # ------------------------------------------------------------------

    def pre_iter_process(self):
        """Resynchronise the auxiliary velocity with the real one."""
        if self.aux_vel is not None:
            self.aux_vel.assign(self.vel)

    def post_iter_process(self):
        pass

    # ------------------------------------------------------------------
    # Flat state vector
    # ------------------------------------------------------------------

    def write_to_scalar_array(self) -> np.ndarray:
        """Flatten the integrated state into a 1-D array."""
        blocks = [np.array([self.time])]
        blocks.extend(c.flatten() for c in self._state_coords())
        return np.concatenate(blocks)

    def read_from_scalar_array(self, array):
        """
        Load a state written by `write_to_scalar_array`.

        Raises:
            ValueError: If the array length does not match this system
        """
        array = np.asarray(array, dtype=np.float64)
        expected = self.scalar_array_size()
        if array.shape != (expected,):
            raise ValueError(f"State array must have shape ({expected},), got {array.shape}")
        self._load_state(array)

    def scalar_array_size(self) -> int:
        return 1 + 3 * self.number * len(self._state_coords())

    def collect_increment(self, enabled: bool):
        """Switch increment collection on (cleared) or off."""
        self._collecting = bool(enabled)
        if self._collecting:
            self.clear_increment()

    def clear_increment(self):
        size = self.scalar_array_size()
        if self._increment is None or self._increment.shape != (size,):
            self._increment = np.zeros(size)
            self._increment_comp = np.zeros(size)
        else:
            self._increment.fill(0.0)
            self._increment_comp.fill(0.0)

    @property
    def increment(self) -> np.ndarray:
        """Change of the flat state since the last `clear_increment`."""
        if self._increment is None:
            return np.zeros(self.scalar_array_size())
        return self._increment - self._increment_comp

    def _accumulate(self, index, delta):
        # Kahan summation, element-wise
        y = delta - self._increment_comp[index]
        t = self._increment[index] + y
        self._increment_comp[index] = (t - self._increment[index]) - y
        self._increment[index] = t

    def _load_state(self, array: np.ndarray) -> int:
        self.particles.time = float(array[0])
        offset = 1
        size = 3 * self.number
        for coords in self._state_coords():
            coords.load_flat(array[offset:offset + size])
            offset += size
        return offset

    def evaluate_general_derivative(self) -> np.ndarray:
        """
        Derivative of the flat state vector with respect to the integration variable.

        Uses the real velocity for the velocity-dependent forces; the auxiliary
        velocity is given the same rate as the real one.
        """
        acc = self.evaluate_acc()
        dt_ds = self._pos_phy_time(1.0)
        dv_ds = self._vel_phy_time(1.0)
        blocks = [np.array([dt_ds]),
                  self._pos_derivative().flatten() * dt_ds]
        vel_rate = self._vel_derivative(acc).flatten() * dv_ds
        blocks.append(vel_rate)
        if self.aux_vel is not None:
            blocks.append(vel_rate)
        blocks.extend(self._regularization_derivative(dv_ds))
        return np.concatenate(blocks)

    def _regularization_derivative(self, dv_ds: float):
        return []

    def __repr__(self):
        return f"{type(self).__name__}(number={self.number}, time={self.time:.16g})"


class RegularizedSystem(SimpleSystem):
    """
    Absolute coordinates with a logH / TTL time transformation.

    Args:
        particles, interaction, time: As for SimpleSystem
        regu_type: ReguType or its name ('logH', 'TTL', 'none')
    """

    regularized = True

    def __init__(self, particles, interaction: Interaction = None, time: float = None,
                 regu_type=ReguType.LOGH, **kwargs):
        super().__init__(particles, interaction, time, **kwargs)
        self.regu = Regularization(self, regu_type)

    @property
    def omega(self) -> float:
        return self.regu.omega.value

    @property
    def bindE(self) -> float:
        return self.regu.bindE.value

    def step_scale(self) -> float:
        return super().step_scale() * self.regu.regu_factor(self)

    def _pos_phy_time(self, step_size: float) -> float:
        return self.regu.eval_pos_phy_time(self, step_size)

    def _vel_phy_time(self, step_size: float) -> float:
        return self.regu.eval_vel_phy_time(self, step_size)

    def _advance_regularization(self, vel: Coords, ext_acc, phy_time: float):
        d_omega = self.regu.advance_omega(self.mass, vel, self.accels.newtonian_acc, phy_time)
        d_bindE = 0.0
        if ext_acc is not None:
            d_bindE = self.regu.advance_bindE(self.mass, vel, ext_acc, phy_time)
        if self._collecting:
            end = self.scalar_array_size()
            self._accumulate(slice(end - 2, end), np.array([d_omega, d_bindE]))

    def write_to_scalar_array(self) -> np.ndarray:
        return np.concatenate([super().write_to_scalar_array(), [self.omega, self.bindE]])

    def scalar_array_size(self) -> int:
        return super().scalar_array_size() + 2

    def _load_state(self, array: np.ndarray) -> int:
        offset = super()._load_state(array)
        self.regu.reset(array[offset], array[offset + 1])
        return offset + 2

    def _regularization_derivative(self, dv_ds: float):
        mass = self.mass
        vel = self.vel.data
        d_omega = np.dot(mass, np.einsum('ij,ij->j', vel, self.accels.newtonian_acc.data))
        ext_acc = self._external_acc()
        if ext_acc is None:
            d_bindE = 0.0
        else:
            d_bindE = -np.dot(mass, np.einsum('ij,ij->j', vel, ext_acc.data))
        return [np.array([d_omega * dv_ds, d_bindE * dv_ds])]


class ChainSystem(SimpleSystem):
    """
    Chain coordinates, physical time.

    Positions and velocities are integrated as chain vectors; absolute
    coordinates are rebuilt after every drift/kick. The chain order is
    refreshed at step boundaries when the particle proximity changes.
    """

    chained = True

    def _setup_coordinates(self):
        self.chain_index = chain.calc_chain_index(self.pos)
        self.chain_pos = chain.to_chain(self.pos, self.chain_index)
        self.chain_vel = chain.to_chain(self.vel, self.chain_index)
        if self.aux_vel is not None:
            self.chain_aux_vel = chain.to_chain(self.aux_vel, self.chain_index)
        else:
            self.chain_aux_vel = None
        self._chain_acc = Coords(self.number)
        self._sync_cartesian()

    def _sync_cartesian(self):
        chain.to_cartesian(self.chain_pos, self.chain_index, out=self.pos)
        chain.to_cartesian(self.chain_vel, self.chain_index, out=self.vel)
        if self.chain_aux_vel is not None:
            chain.to_cartesian(self.chain_aux_vel, self.chain_index, out=self.aux_vel)

    def _state_coords(self):
        coords = [self.chain_pos, self.chain_vel]
        if self.chain_aux_vel is not None:
            coords.append(self.chain_aux_vel)
        return coords

    def _advance_pos(self, phy_time: float):
        self._advance_coords(self.chain_pos, self.chain_vel, phy_time, 0)
        chain.to_cartesian(self.chain_pos, self.chain_index, out=self.pos)

    def _advance_vel(self, acc: Coords, phy_time: float):
        self._advance_coords(self.chain_vel, chain.to_chain(acc, self.chain_index, out=self._chain_acc), phy_time, 1)
        chain.to_cartesian(self.chain_vel, self.chain_index, out=self.vel)

    def _advance_aux_vel(self, acc: Coords, phy_time: float):
        self._advance_coords(self.chain_aux_vel, chain.to_chain(acc, self.chain_index, out=self._chain_acc),
                             phy_time, 2)
        chain.to_cartesian(self.chain_aux_vel, self.chain_index, out=self.aux_vel)

    def _pos_derivative(self) -> Coords:
        return self.chain_vel

    def _vel_derivative(self, acc: Coords) -> Coords:
        return chain.to_chain(acc, self.chain_index)

    def _load_state(self, array: np.ndarray) -> int:
        offset = super()._load_state(array)
        self._sync_cartesian()
        return offset

    def pre_iter_process(self):
        """Resynchronise the auxiliary velocity and refresh a stale chain order."""
        super().pre_iter_process()
        if self.chain_aux_vel is not None:
            self.chain_aux_vel.assign(self.chain_vel)
        self.update_chain_index()

    def update_chain_index(self) -> bool:
        """
        Recompute the chain order; rebuild the chain vectors if it changed.

        Returns:
            True if the order changed
        """
        new_index = chain.calc_chain_index(self.pos)
        if np.array_equal(new_index, self.chain_index):
            return False
        old_index = self.chain_index
        self.chain_pos = chain.update_chain(self.chain_pos, old_index, new_index)
        self.chain_vel = chain.update_chain(self.chain_vel, old_index, new_index)
        if self.chain_aux_vel is not None:
            self.chain_aux_vel = chain.update_chain(self.chain_aux_vel, old_index, new_index)
        self.chain_index = new_index
        self._sync_cartesian()
        return True


class ARChainSystem(ChainSystem, RegularizedSystem):
    """
    Chain coordinates with a logH / TTL time transformation (AR-chain).

    The production configuration for hierarchical systems with close encounters.
    """
