"""
FlareAuth Faults - structured, typed error values.

Faults travel inside ``Err`` results; ``FaultKind`` is the closed set of
variants callers branch on.
"""

from .core import (
    DOMAIN_DEFAULTS,
    ConfigFault,
    Fault,
    FaultDomain,
    FaultKind,
    Severity,
)

__all__ = [
    "DOMAIN_DEFAULTS",
    "ConfigFault",
    "Fault",
    "FaultDomain",
    "FaultKind",
    "Severity",
]
