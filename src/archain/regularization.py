"""
Time transformation (algorithmic regularization).

Physical time t is replaced by a fictitious time s with dt = g · ds, where the
weight g is large far from close encounters and small inside them. The
integrator then takes near-uniform steps in s while dt varies over orders of
magnitude through a close passage.

Policies:
- logH: drift weight 1 / (bindE + T), kick weight 1 / (-U)
- TTL:  drift weight 1 / ω,           kick weight 1 / (-U)
- none: weight 1 (physical time)

ω (≈ -U) and bindE (= -E) are initialised once from the initial state and
afterwards only changed by `advance_omega` / `advance_bindE` during kicks.
Both are compensated scalars; recomputing them from positions would bring
back the cancellation error the transformation is meant to avoid.
"""

from enum import Enum

import numpy as np

from archain.kahan import KahanNumber


class ReguType(Enum):
    LOGH = 'logH'
    TTL = 'TTL'
    NONE = 'none'

    @classmethod
    def parse(cls, value) -> 'ReguType':
        """
        Accept a ReguType or its (case-insensitive) name.

        Raises:
            ValueError: If the value is not a supported regularization
        """
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            for member in cls:
                if member.value.lower() == value.lower():
                    return member
        raise ValueError(f"Unsupported regularization type: {value!r}")


class Regularization:
    """
    Regularization state (ω, bindE) of one particle system.

    Args:
        system: Particle system providing `capital_omega()` and `total_energy()`
        regu_type: logH, TTL or none
    """

    def __init__(self, system, regu_type=ReguType.LOGH):
        self.regu_type = ReguType.parse(regu_type)
        self.omega = KahanNumber(system.capital_omega())
        self.bindE = KahanNumber(-system.total_energy())

    def eval_pos_phy_time(self, system, step_size: float) -> float:
        """Physical duration of a drift of fictitious length `step_size`."""
        if self.regu_type is ReguType.LOGH:
            return step_size / (self.bindE.value + system.kinetic_energy())
        if self.regu_type is ReguType.TTL:
            return step_size / self.omega.value
        return step_size

    def eval_vel_phy_time(self, system, step_size: float) -> float:
        """Physical duration of a kick of fictitious length `step_size`."""
        if self.regu_type is ReguType.NONE:
            return step_size
        return step_size / system.capital_omega()

    def regu_factor(self, system) -> float:
        """ds/dt at the current state, i.e. the inverse drift weight."""
        if self.regu_type is ReguType.LOGH:
            return self.bindE.value + system.kinetic_energy()
        if self.regu_type is ReguType.TTL:
            return self.omega.value
        return 1.0

    def advance_omega(self, mass, vel, newtonian_acc, phy_time: float) -> float:
        """ω += Σ m v·a_newton · Δt; returns the change."""
        d_omega = np.dot(mass, np.einsum('ij,ij->j', vel.data, newtonian_acc.data)) * phy_time
        self.omega += d_omega
        return d_omega

    def advance_bindE(self, mass, vel, ext_acc, phy_time: float) -> float:
        """bindE += -Σ m v·a_ext · Δt; returns the change."""
        d_bindE = -np.dot(mass, np.einsum('ij,ij->j', vel.data, ext_acc.data)) * phy_time
        self.bindE += d_bindE
        return d_bindE

    def reset(self, omega: float, bindE: float):
        self.omega.reset(omega)
        self.bindE.reset(bindE)

    def __repr__(self):
        return (f"Regularization({self.regu_type.value}, omega={self.omega.value:.16g}, "
                f"bindE={self.bindE.value:.16g})")
