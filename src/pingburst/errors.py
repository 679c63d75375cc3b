"""Exceptions raised by PingBurst.

Probe failures are not exceptions: they are reported as ``ProbeStatus``
values on a ``ProbeOutcome``. Only fatal startup problems and programming
errors are raised.
"""


class ConfigurationError(Exception):
    """Invalid or missing configuration detected at startup."""


class UnknownTargetError(KeyError):
    """An outcome referenced a target that is not in the registry."""
