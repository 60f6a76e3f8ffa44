"""
Exception hierarchy for the load engine.

Only conditions that stop a run (or stop it from starting) are raised.
Request failures, failed checks and extraction misses are *recorded* as
metrics instead; see :mod:`stampede.metrics`.
"""

from __future__ import annotations


class StampedeError(Exception):
    """Base class for every error raised by the engine."""


class ConfigError(StampedeError, ValueError):
    """Run options, stages or durations are malformed."""


class ThresholdSyntaxError(ConfigError):
    """A threshold expression could not be parsed."""

    def __init__(self, expression: str, reason: str):
        self.expression = expression
        self.reason = reason
        super().__init__(f"Invalid threshold {expression!r}: {reason}")


class ScriptError(StampedeError):
    """A load script could not be loaded or defines no scenarios."""


class SetupError(StampedeError):
    """
    The setup phase failed.

    Raised when a setup check fails or the setup callable raises.  The
    main phase never starts after a ``SetupError``.
    """

    def __init__(self, message: str, failed_checks: list[str] | None = None):
        self.failed_checks = list(failed_checks or [])
        super().__init__(message)


class IterationAborted(StampedeError):
    """A fatal step failed; the current iteration ends without further steps."""

    def __init__(self, step_name: str, reason: str):
        self.step_name = step_name
        self.reason = reason
        super().__init__(f"Step {step_name!r} aborted the iteration: {reason}")
