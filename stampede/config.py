"""
Engine configuration.

Defines environment-specific configuration classes for the load engine.
Each class captures the target base URL and the operational knobs of a
run (request timeout, scheduler control interval, graceful-stop window,
no-data threshold policy).  The ``get_config`` factory selects the right
class based on the ``STAMPEDE_ENV`` environment variable (or an explicit
key), and :class:`Settings` freezes the chosen values into an immutable
object that is handed to the :class:`~stampede.runner.Runner`.

Key Concepts Demonstrated:
- Class-based configuration with inheritance for shared defaults
- Environment-variable overrides for 12-factor deployability
- Separate testing configuration with short timeouts and a fake URL
- An explicit settings value instead of process-wide mutable globals
"""

from __future__ import annotations

import os
from dataclasses import dataclass, fields, replace
from typing import Any

NO_DATA_PASS = "pass"
NO_DATA_FAIL = "fail"
NO_DATA_POLICIES = (NO_DATA_PASS, NO_DATA_FAIL)


class Config:
    """
    Base (shared) configuration for the engine.

    All environment-specific classes inherit from ``Config`` so that
    common defaults only need to be stated once.
    """

    # Root URL that relative step URLs are joined onto.
    BASE_URL: str = os.environ.get("STAMPEDE_BASE_URL", "http://localhost:8080")

    # Seconds a single HTTP call may take before it counts as a timeout.
    REQUEST_TIMEOUT: float = float(os.environ.get("STAMPEDE_REQUEST_TIMEOUT", "60"))

    # How often the scheduler re-samples the ramp curve and the runner
    # re-evaluates abort-on-fail thresholds.
    CONTROL_INTERVAL: float = float(os.environ.get("STAMPEDE_CONTROL_INTERVAL", "1"))

    # Seconds to wait for in-flight iterations once the run is over.
    GRACEFUL_STOP: float = float(os.environ.get("STAMPEDE_GRACEFUL_STOP", "30"))

    # Verdict for a threshold whose metric recorded no samples.
    NO_DATA_POLICY: str = os.environ.get("STAMPEDE_NO_DATA_POLICY", NO_DATA_PASS)

    LOG_LEVEL: str = os.environ.get("STAMPEDE_LOG_LEVEL", "INFO")


class DevelopmentConfig(Config):
    """Local runs against a service started on the developer's machine."""

    LOG_LEVEL: str = os.environ.get("STAMPEDE_LOG_LEVEL", "DEBUG")


class TestingConfig(Config):
    """
    Test-suite overrides.

    Points the base URL at a non-routable host so that unit tests never
    reach a real service, and shortens every timer so runs finish fast.
    """

    BASE_URL: str = os.environ.get("TEST_STAMPEDE_BASE_URL", "http://target.test")
    REQUEST_TIMEOUT: float = float(os.environ.get("TEST_STAMPEDE_REQUEST_TIMEOUT", "2"))
    CONTROL_INTERVAL: float = 0.05
    GRACEFUL_STOP: float = 1.0


class ProductionConfig(Config):
    """CI and shared-environment runs; every value comes from the environment."""

    LOG_LEVEL: str = os.environ.get("STAMPEDE_LOG_LEVEL", "WARNING")


# Lookup table mapping environment name strings to their config classes.
config = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
    "default": Config,
}


def get_config(env: str | None = None) -> type[Config]:
    """
    Return the configuration class for the given environment.

    Args:
        env: One of ``"development"``, ``"testing"`` or ``"production"``.
            When *None*, the ``STAMPEDE_ENV`` environment variable is
            consulted, falling back to the base ``Config``.

    Returns:
        The ``Config`` subclass matching the requested environment, or
        ``Config`` if the key is unrecognised.
    """
    if env is None:
        env = os.environ.get("STAMPEDE_ENV", "default")
    return config.get(env, config["default"])


@dataclass(frozen=True)
class Settings:
    """
    Immutable engine settings for one run.

    Attributes:
        base_url: Root URL joined with relative step URLs.
        request_timeout: Per-request timeout in seconds.
        control_interval: Scheduler sampling period in seconds.
        graceful_stop: Seconds to wait for in-flight iterations at shutdown.
        no_data_policy: ``"pass"`` or ``"fail"`` for thresholds with no samples.
        log_level: Root logging level name used by the CLI.
    """

    base_url: str = Config.BASE_URL
    request_timeout: float = Config.REQUEST_TIMEOUT
    control_interval: float = Config.CONTROL_INTERVAL
    graceful_stop: float = Config.GRACEFUL_STOP
    no_data_policy: str = Config.NO_DATA_POLICY
    log_level: str = Config.LOG_LEVEL

    def __post_init__(self) -> None:
        if self.no_data_policy not in NO_DATA_POLICIES:
            raise ValueError(
                f"no_data_policy must be one of {NO_DATA_POLICIES}, got {self.no_data_policy!r}"
            )
        if self.control_interval <= 0:
            raise ValueError("control_interval must be > 0")
        if self.request_timeout <= 0:
            raise ValueError("request_timeout must be > 0")

    @classmethod
    def from_config(cls, config_class: type[Config] | None = None, **overrides: Any) -> Settings:
        """
        Build settings from a config class, applying non-``None`` overrides.

        Args:
            config_class: The class to read from; defaults to
                ``get_config()``.
            **overrides: Field values that win over the config class
                (``None`` values are ignored so CLI flags can be passed
                straight through).

        Returns:
            A frozen ``Settings`` instance.
        """
        config_class = config_class or get_config()
        settings = cls(
            base_url=config_class.BASE_URL,
            request_timeout=config_class.REQUEST_TIMEOUT,
            control_interval=config_class.CONTROL_INTERVAL,
            graceful_stop=config_class.GRACEFUL_STOP,
            no_data_policy=config_class.NO_DATA_POLICY,
            log_level=config_class.LOG_LEVEL,
        )
        known = {f.name for f in fields(cls)}
        updates = {k: v for k, v in overrides.items() if k in known and v is not None}
        return replace(settings, **updates) if updates else settings
