"""
Physical constants and unit systems used throughout the integrator.

UNIT SYSTEMS:
- natural:      length AU, mass M_sun, time yr/(2π)  ->  G = 1
- astronomical: length AU, mass M_sun, time yr       ->  G = 4π²
- si:           m, kg, s

Components that need G or c (interactions, regularization energies, the
free-fall step scale) receive a `Units` value instead of reading module
globals, so several unit systems can coexist in one process.
"""

from dataclasses import dataclass

import numpy as np

pi = np.pi

# SI reference values
G_SI = 6.67430e-11  # [m³/(kg·s²)]
c_SI = 299792458.0  # [m/s]
AU_SI = 1.495978707e11  # [m]
M_sun_SI = 1.98847e30  # [kg]
year_SI = 365.25 * 86400.0  # [s]

# Astronomical system (AU, M_sun, yr)
G_astro = 4.0 * pi**2  # [AU³/(M_sun·yr²)]
c_astro = c_SI * year_SI / AU_SI  # [AU/yr] ≈ 63241.08

# Natural system (AU, M_sun, yr/2π)
G_natural = 1.0
c_natural = c_astro / (2.0 * pi)  # [AU/(yr/2π)] ≈ 10065.32


@dataclass(frozen=True)
class Units:
    """Gravitational constant and speed of light of one unit system."""

    G: float = G_natural
    c: float = c_natural
    name: str = "natural"

    @property
    def c_squared(self) -> float:
        return self.c * self.c

    @classmethod
    def natural(cls) -> 'Units':
        """AU, M_sun and yr/(2π): G = 1."""
        return cls(G=G_natural, c=c_natural, name="natural")

    @classmethod
    def astronomical(cls) -> 'Units':
        """AU, M_sun and yr: G = 4π²."""
        return cls(G=G_astro, c=c_astro, name="astronomical")

    @classmethod
    def si(cls) -> 'Units':
        return cls(G=G_SI, c=c_SI, name="si")

    @classmethod
    def from_name(cls, name: str) -> 'Units':
        """
        Look up a preset by name.

        Raises:
            ValueError: If the name is not a known preset
        """
        presets = {'natural': cls.natural, 'astronomical': cls.astronomical, 'si': cls.si}
        try:
            return presets[name.lower()]()
        except KeyError:
            raise ValueError(f"Unknown unit system '{name}', expected one of {sorted(presets)}")


DEFAULT_UNITS = Units.natural()
