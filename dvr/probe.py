from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Callable

from . import health
from .health import NetworkError
from .models import Outcome, ProbeResult, ProbeSpec, split_host_port
from .settings import settings


@dataclass(frozen=True)
class _Attempt:
    matched: bool
    snippet: str | None
    detail: str


@dataclass(frozen=True)
class _Stage:
    matched: bool
    attempts: int
    snippet: str | None
    detail: str
    cancelled: bool = False


class ServiceProbe:
    """Runs one ProbeSpec (and its fallback chain) to a verdict.

    Network failures never escape: they only consume attempts. A response
    that does not contain the expected pattern consumes an attempt too.
    An empty ``expected_pattern`` accepts any 2xx response.
    """

    def __init__(
        self,
        http_get: Callable[..., health.HttpResponse] = health.http_get,
        tcp_connect: Callable[..., None] = health.tcp_connect,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
        connect_timeout: float | None = None,
        total_timeout: float | None = None,
        snippet_chars: int | None = None,
    ):
        self.http_get = http_get
        self.tcp_connect = tcp_connect
        self._sleep = sleep
        self._clock = clock
        self.connect_timeout = settings.connect_timeout_s if connect_timeout is None else connect_timeout
        self.total_timeout = settings.request_timeout_s if total_timeout is None else total_timeout
        self.snippet_chars = settings.snippet_chars if snippet_chars is None else snippet_chars

    def check(self, spec: ProbeSpec, cancel: threading.Event | None = None) -> ProbeResult:
        start = self._clock()
        chain = spec.chain()

        total = 0
        snippet: str | None = None
        detail = ""
        stage = chain[0]
        attempts = 0
        for idx, stage in enumerate(chain):
            res = self._run_stage(stage, cancel)
            attempts = res.attempts
            total += res.attempts
            if res.snippet is not None:
                snippet = res.snippet
            detail = res.detail or detail
            if res.matched:
                via_fallback = idx > 0
                outcome = Outcome.DEGRADED if via_fallback and spec.degraded_on_fallback else Outcome.HEALTHY
                return ProbeResult(
                    service_name=spec.service_name,
                    outcome=outcome,
                    attempts_used=res.attempts,
                    last_response_snippet=snippet,
                    elapsed=self._clock() - start,
                    via_fallback=via_fallback,
                    endpoint=stage.primary_url_or_endpoint,
                    total_attempts=total,
                    detail=detail,
                )
            if res.cancelled:
                detail = f"cancelled ({detail})" if detail else "cancelled"
                break

        return ProbeResult(
            service_name=spec.service_name,
            outcome=Outcome.UNREACHABLE,
            attempts_used=attempts,
            last_response_snippet=snippet,
            elapsed=self._clock() - start,
            via_fallback=stage is not chain[0],
            endpoint=stage.primary_url_or_endpoint,
            total_attempts=total,
            detail=detail,
        )

    def _run_stage(self, stage: ProbeSpec, cancel: threading.Event | None) -> _Stage:
        snippet: str | None = None
        detail = ""
        for attempt in range(1, stage.max_attempts + 1):
            if cancel is not None and cancel.is_set():
                return _Stage(False, attempt - 1, snippet, detail, cancelled=True)
            a = self._attempt(stage)
            if a.snippet is not None:
                snippet = a.snippet
            detail = a.detail
            if a.matched:
                return _Stage(True, attempt, snippet, detail)
            if attempt < stage.max_attempts:
                if self._wait(stage.delay_after(attempt), cancel):
                    return _Stage(False, attempt, snippet, detail, cancelled=True)
        return _Stage(False, stage.max_attempts, snippet, detail)

    def _wait(self, delay: float, cancel: threading.Event | None) -> bool:
        """Sleep between attempts. Returns True if cancelled meanwhile."""
        if delay <= 0:
            return cancel is not None and cancel.is_set()
        if cancel is None:
            self._sleep(delay)
            return False
        return cancel.wait(delay)

    def _attempt(self, stage: ProbeSpec) -> _Attempt:
        """One network round trip against ``stage``'s endpoint."""
        if stage.protocol == "tcp":
            host, port = split_host_port(stage.primary_url_or_endpoint)
            try:
                self.tcp_connect(host, port, self.connect_timeout)
            except NetworkError as e:
                return _Attempt(False, None, str(e))
            return _Attempt(True, None, "connected")

        try:
            resp = self.http_get(stage.primary_url_or_endpoint, self.connect_timeout, self.total_timeout)
        except NetworkError as e:
            return _Attempt(False, None, str(e))
        snippet = resp.body[: self.snippet_chars]
        if stage.expected_pattern:
            matched = stage.matches(resp.body)
        else:
            matched = 200 <= resp.status < 300
        return _Attempt(matched, snippet, f"HTTP {resp.status}")
