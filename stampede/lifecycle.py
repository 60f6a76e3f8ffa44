"""
Setup and teardown phases.

``setup(client)`` runs exactly once, on the orchestrating thread, before
any VU starts.  Whatever it returns is deep-frozen and shared by
reference with every VU as the read-only setup context.  A failed setup
check or an exception inside setup raises :class:`SetupError`, and the
run never reaches its main phase.

``teardown(client, data)`` runs exactly once after every VU stopped.
Its failures are logged and reported but never change threshold
verdicts that were already computed.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from types import MappingProxyType
from typing import Any

from stampede.exceptions import SetupError
from stampede.http import HttpClient, StepResponse
from stampede.metrics import MetricRecorder

logger = logging.getLogger(__name__)

SetupFn = Callable[["PhaseClient"], Any]
TeardownFn = Callable[["PhaseClient", Any], None]


def freeze(value: Any) -> Any:
    """
    Return a deeply read-only copy of *value*.

    Mappings become ``MappingProxyType`` views over fresh dicts, lists
    and tuples become tuples, sets become frozensets.  Scalars are
    returned as-is.
    """
    if isinstance(value, Mapping):
        return MappingProxyType({key: freeze(item) for key, item in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(freeze(item) for item in value)
    if isinstance(value, (set, frozenset)):
        return frozenset(freeze(item) for item in value)
    return value


class PhaseClient(HttpClient):
    """
    HTTP client handed to ``setup`` and ``teardown``.

    Adds :meth:`check`, which records named checks like a scenario step
    would and remembers which ones failed.
    """

    def __init__(self, base_url: str, recorder: MetricRecorder, timeout: float, phase: str):
        super().__init__(base_url, recorder, timeout, tags={"phase": phase})
        self.phase = phase
        self.failed_checks: list[str] = []

    def check(self, response: StepResponse, checks: Mapping[str, Callable[[StepResponse], bool]]) -> bool:
        """
        Evaluate *checks* against *response*.

        Returns:
            ``True`` if every check passed.
        """
        all_passed = True
        for name, predicate in checks.items():
            try:
                passed = bool(predicate(response))
            except Exception:
                logger.debug("%s check %r raised", self.phase, name, exc_info=True)
                passed = False
            self.recorder.record_check(name, passed, {"phase": self.phase})
            if not passed:
                all_passed = False
                self.failed_checks.append(name)
                logger.warning("%s check failed: %s (status %s)", self.phase, name, response.status)
        return all_passed


def run_setup(setup: SetupFn | None, client: PhaseClient) -> Any:
    """
    Run the setup callable once and freeze its return value.

    Args:
        setup: The script's setup callable, or ``None``.
        client: Client tagged with ``phase=setup``.

    Returns:
        The frozen setup context (``None`` when there is no setup).

    Raises:
        SetupError: If a setup check failed or setup raised.
    """
    if setup is None:
        return None

    logger.info("Running setup")
    try:
        data = setup(client)
    except SetupError:
        raise
    except Exception as exc:
        raise SetupError(f"Setup raised {type(exc).__name__}: {exc}") from exc
    finally:
        client.close()

    if client.failed_checks:
        raise SetupError(
            f"Setup checks failed: {', '.join(client.failed_checks)}",
            failed_checks=client.failed_checks,
        )

    logger.info("Setup finished")
    return freeze(data)


def run_teardown(teardown: TeardownFn | None, client: PhaseClient, data: Any) -> str | None:
    """
    Run the teardown callable once.

    Returns:
        ``None`` on success, otherwise a description of what failed.
    """
    if teardown is None:
        return None

    logger.info("Running teardown")
    try:
        teardown(client, data)
    except Exception as exc:
        logger.exception("Teardown raised")
        return f"Teardown raised {type(exc).__name__}: {exc}"
    finally:
        client.close()

    if client.failed_checks:
        message = f"Teardown checks failed: {', '.join(client.failed_checks)}"
        logger.warning(message)
        return message
    return None
