"""
Algorithmic-regularization chain integrator for the gravitational N-body problem.

The package combines a time-transformed (logH / TTL) drift-kick-drift scheme on
absolute or chain-relative coordinates with adaptive ODE iterators
(bisection, Bulirsch-Stoer, IAS15), pluggable error checkers and step-size
controllers.
"""

__version__ = "0.1.0"
