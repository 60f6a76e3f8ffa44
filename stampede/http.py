"""
HTTP transport for scenario steps.

:class:`HttpClient` wraps one ``requests.Session`` per virtual user,
times every call, turns transport errors into failed outcomes instead of
exceptions, and records each outcome into the shared
:class:`~stampede.metrics.MetricRecorder`.

Cancellation: the scheduler may force-stop a VU whose request is still
in flight.  :meth:`HttpClient.cancel_in_flight` records that request as
a failed ``"cancelled"`` outcome and closes the session; when the
blocked call eventually returns, its late result is dropped so the
request is counted exactly once.

Key Concepts Demonstrated:
- Timeout and connection errors surfaced as data (status ``0``), never
  raised into scenario code
- Forgiving JSON decoding of bodies that may be HTML error pages
- Exactly-once recording under a race between completion and cancel
"""

from __future__ import annotations

import json as jsonlib
import logging
import threading
import time
from collections.abc import Collection, Mapping
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urljoin

import requests

from stampede.extract import extract_path
from stampede.metrics import MetricRecorder
from stampede.models import NETWORK_ERROR_STATUS, RequestOutcome

logger = logging.getLogger(__name__)

DEFAULT_EXPECTED_STATUSES = range(200, 400)

CANCELLED = "cancelled"

_MISSING = object()


def to_jsonable(value: Any) -> Any:
    """
    Turn read-only containers back into plain ones for the JSON encoder.

    Frozen setup data holds ``MappingProxyType`` views and tuples; bodies
    built from it are copied into dicts and lists before sending.
    """
    if isinstance(value, Mapping):
        return {key: to_jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(item) for item in value]
    return value


@dataclass
class StepResponse:
    """
    The parts of an HTTP response scenario code may look at.

    Attributes:
        status: HTTP status, or ``0`` on a network error or timeout.
        latency_ms: Measured latency in milliseconds.
        content: Raw body bytes (empty on error).
        headers: Response headers.
        error: Transport error description, if any.
        failed: Whether the call counted toward ``http_req_failed``.
    """

    status: int
    latency_ms: float
    content: bytes = b""
    headers: Mapping[str, str] = field(default_factory=dict)
    error: str | None = None
    failed: bool = False
    _decoded: Any = field(default=_MISSING, repr=False)

    @property
    def status_code(self) -> int:
        return self.status

    @property
    def text(self) -> str:
        return self.content.decode("utf-8", errors="replace")

    def json(self, path: str | None = None, default: Any = None) -> Any:
        """
        Decode the body as JSON, optionally walking a dotted *path*.

        Non-JSON bodies (e.g. a 502 HTML page) yield *default* rather
        than raising, so checks and extract steps stay simple.
        """
        if self._decoded is _MISSING:
            try:
                self._decoded = jsonlib.loads(self.content) if self.content else None
            except ValueError:
                self._decoded = None
        if self._decoded is None:
            return default
        if path is None:
            return self._decoded
        return extract_path(self._decoded, path, default)


class HttpClient:
    """
    Per-VU HTTP client that records every call.

    Args:
        base_url: Root URL relative step URLs are joined onto.
        recorder: Shared metric recorder.
        timeout: Per-request timeout in seconds.
        tags: Tags added to every outcome (e.g. ``vu``, ``phase``).
        session: Session to use; a new one is created when omitted.
    """

    def __init__(
        self,
        base_url: str,
        recorder: MetricRecorder,
        timeout: float,
        tags: Mapping[str, str] | None = None,
        session: requests.Session | None = None,
    ):
        self.base_url = base_url
        self.recorder = recorder
        self.timeout = timeout
        self.tags = dict(tags or {})
        self.session = session or requests.Session()
        self._lock = threading.Lock()
        self._in_flight: dict[str, str] | None = None
        self._in_flight_started = 0.0
        self._cancelled = False

    def resolve_url(self, url: str) -> str:
        if url.startswith(("http://", "https://")):
            return url
        return urljoin(self.base_url.rstrip("/") + "/", url.lstrip("/"))

    def request(
        self,
        method: str,
        url: str,
        *,
        json: Any = None,
        params: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
        expected_statuses: Collection[int] = DEFAULT_EXPECTED_STATUSES,
        tags: Mapping[str, str] | None = None,
    ) -> StepResponse:
        """
        Send one request, record its outcome and return the response.

        A JSON body is sent with ``Content-Type: application/json``.
        Network errors and timeouts are returned as status ``0`` and
        recorded as failures; they are never raised.  Any other error
        (an unencodable body, say) propagates and records nothing.
        """
        outcome_tags = {**self.tags, **(tags or {}), "method": method.upper()}
        target = self.resolve_url(url)

        with self._lock:
            if self._cancelled:
                return StepResponse(status=NETWORK_ERROR_STATUS, latency_ms=0.0, error=CANCELLED, failed=True)
            self._in_flight = outcome_tags
            self._in_flight_started = time.perf_counter()

        started = time.perf_counter()
        error: str | None = None
        status = NETWORK_ERROR_STATUS
        content = b""
        response_headers: Mapping[str, str] = {}
        try:
            response = self.session.request(
                method=method.upper(),
                url=target,
                json=to_jsonable(json),
                params=dict(params) if params else None,
                headers=dict(headers) if headers else None,
                timeout=self.timeout,
            )
            status = response.status_code
            content = response.content or b""
            response_headers = dict(response.headers or {})
        except requests.Timeout:
            error = "timeout"
        except requests.RequestException as exc:
            error = f"{type(exc).__name__}: {exc}"
        except Exception:
            # Never sent, so nothing is recorded and nothing is left to cancel.
            with self._lock:
                self._in_flight = None
            raise
        latency_ms = (time.perf_counter() - started) * 1000.0

        failed = error is not None or status not in expected_statuses
        with self._lock:
            self._in_flight = None
            if self._cancelled:
                # Already recorded by cancel_in_flight().
                return StepResponse(status=NETWORK_ERROR_STATUS, latency_ms=latency_ms, error=CANCELLED, failed=True)
            self.recorder.record_outcome(
                RequestOutcome(
                    status=status,
                    latency_ms=latency_ms,
                    failed=failed,
                    error=error,
                    tags=outcome_tags,
                )
            )

        if error is not None:
            logger.debug("%s %s failed: %s", method.upper(), target, error)
        return StepResponse(
            status=status,
            latency_ms=latency_ms,
            content=content,
            headers=response_headers,
            error=error,
            failed=failed,
        )

    def get(self, url: str, **kwargs: Any) -> StepResponse:
        return self.request("GET", url, **kwargs)

    def post(self, url: str, **kwargs: Any) -> StepResponse:
        return self.request("POST", url, **kwargs)

    def put(self, url: str, **kwargs: Any) -> StepResponse:
        return self.request("PUT", url, **kwargs)

    def patch(self, url: str, **kwargs: Any) -> StepResponse:
        return self.request("PATCH", url, **kwargs)

    def delete(self, url: str, **kwargs: Any) -> StepResponse:
        return self.request("DELETE", url, **kwargs)

    @property
    def in_flight(self) -> bool:
        with self._lock:
            return self._in_flight is not None

    def cancel_in_flight(self) -> bool:
        """
        Abandon the request currently in flight, if any.

        Records it as a failed ``"cancelled"`` outcome, refuses further
        requests and closes the session.

        Returns:
            ``True`` if a request was in flight and got cancelled.
        """
        with self._lock:
            if self._cancelled:
                return False
            self._cancelled = True
            tags = self._in_flight
            if tags is not None:
                latency_ms = (time.perf_counter() - self._in_flight_started) * 1000.0
                self.recorder.record_outcome(
                    RequestOutcome(
                        status=NETWORK_ERROR_STATUS,
                        latency_ms=latency_ms,
                        failed=True,
                        error=CANCELLED,
                        tags=tags,
                    )
                )
        self.close()
        return tags is not None

    def close(self) -> None:
        self.session.close()
