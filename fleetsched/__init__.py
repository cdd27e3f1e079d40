"""Placement and replica scheduling of workloads across a fleet of member clusters."""

__version__ = "0.1.0"

__all__ = [
    "apigroup",
    "cache",
    "constants",
    "framework",
    "generic_scheduler",
    "models",
    "plugins",
    "runtime",
    "scheduler",
    "store",
]