from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping
from urllib.parse import urlsplit


class Outcome(str, Enum):
    HEALTHY = "Healthy"
    DEGRADED = "Degraded"
    UNREACHABLE = "Unreachable"


class Overall(str, Enum):
    ALL_HEALTHY = "AllHealthy"
    PARTIAL_DEGRADATION = "PartialDegradation"
    FAILED = "Failed"


class Kind(str, Enum):
    NONE = "none"
    FILE = "file"
    DIRECTORY = "directory"


class Action(str, Enum):
    REMOVE_IF_WRONG_TYPE = "RemoveIfWrongType"
    ENSURE_DIRECTORY = "EnsureDirectory"
    WRITE_DEFAULT_FILE = "WriteDefaultFile"
    SET_PERMISSIONS = "SetPermissions"


MAX_CHAIN_LENGTH = 16


@dataclass(frozen=True)
class ProbeSpec:
    """One health check plus its retry and fallback policy.

    ``protocol`` is ``http`` (GET the URL, look for ``expected_pattern`` in
    the body) or ``tcp`` (``host:port``; a successful connect is a match).
    The delay between attempts starts at ``retry_interval`` and is multiplied
    by ``backoff`` after every attempt, capped at ``max_interval``.
    """

    service_name: str
    primary_url_or_endpoint: str
    expected_pattern: str = ""
    max_attempts: int = 1
    retry_interval: float = 0.0
    fallback: ProbeSpec | None = None
    protocol: str = "http"
    match: str = "substring"
    backoff: float = 1.0
    max_interval: float | None = None
    degraded_on_fallback: bool = False

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"{self.service_name}: max_attempts must be >= 1")
        if self.retry_interval < 0:
            raise ValueError(f"{self.service_name}: retry_interval must be >= 0")
        if self.backoff < 1.0:
            raise ValueError(f"{self.service_name}: backoff must be >= 1.0")
        if self.protocol not in {"http", "tcp"}:
            raise ValueError(f"{self.service_name}: unknown protocol {self.protocol!r}")
        if self.protocol == "tcp":
            split_host_port(self.primary_url_or_endpoint)
        else:
            require_http_url(self.primary_url_or_endpoint)
        if self.match not in {"substring", "regex"}:
            raise ValueError(f"{self.service_name}: unknown match mode {self.match!r}")
        if self.match == "regex":
            try:
                re.compile(self.expected_pattern)
            except re.error as e:
                raise ValueError(f"{self.service_name}: bad regex {self.expected_pattern!r}: {e}") from e

    def matches(self, body: str) -> bool:
        if self.match == "regex":
            return re.search(self.expected_pattern, body) is not None
        return self.expected_pattern in body

    def chain(self) -> list[ProbeSpec]:
        """Return [self, fallback, fallback.fallback, ...].

        Raises ValueError if the chain is cyclic or unreasonably long.
        """
        out: list[ProbeSpec] = []
        seen: set[int] = set()
        cur: ProbeSpec | None = self
        while cur is not None:
            if id(cur) in seen:
                raise ValueError(f"{self.service_name}: fallback chain is cyclic")
            if len(out) >= MAX_CHAIN_LENGTH:
                raise ValueError(f"{self.service_name}: fallback chain longer than {MAX_CHAIN_LENGTH}")
            seen.add(id(cur))
            out.append(cur)
            cur = cur.fallback
        return out

    def delay_after(self, attempt: int) -> float:
        """Sleep before attempt ``attempt + 1`` (attempts are 1-based)."""
        delay = self.retry_interval * (self.backoff ** (attempt - 1))
        if self.max_interval is not None:
            delay = min(delay, self.max_interval)
        return delay


@dataclass(frozen=True)
class AuxCheck:
    """Single-shot check that is not a full ProbeSpec.

    ``kind`` is ``metrics`` (HTTP GET, body must contain ``expected_pattern``)
    or ``tcp`` (``target`` is ``host:port``).
    """

    service_name: str
    kind: str
    target: str
    expected_pattern: str = ""

    def __post_init__(self) -> None:
        if self.kind not in {"metrics", "tcp"}:
            raise ValueError(f"{self.service_name}: unknown aux check kind {self.kind!r}")
        if self.kind == "tcp":
            split_host_port(self.target)
        else:
            require_http_url(self.target)

    @property
    def protocol(self) -> str:
        return "tcp" if self.kind == "tcp" else "http"


@dataclass(frozen=True)
class ProbeResult:
    service_name: str
    outcome: Outcome
    attempts_used: int
    last_response_snippet: str | None = None
    elapsed: float = 0.0
    via_fallback: bool = False
    endpoint: str = ""
    total_attempts: int = 0
    detail: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "service_name": self.service_name,
            "outcome": self.outcome.value,
            "attempts_used": self.attempts_used,
            "total_attempts": self.total_attempts,
            "via_fallback": self.via_fallback,
            "endpoint": self.endpoint,
            "last_response_snippet": self.last_response_snippet,
            "elapsed": round(self.elapsed, 3),
            "detail": self.detail,
        }


@dataclass(frozen=True)
class PathSpec:
    """Template entry: what should exist at ``path`` (relative to the root)."""

    path: str
    kind: Kind
    content: str | None = None
    mode: int | None = None


@dataclass(frozen=True)
class PlanItem:
    action: Action
    target_path: str
    expected_kind: Kind
    payload: str | None = None
    mode: int | None = None


@dataclass(frozen=True)
class AppliedAction:
    item: PlanItem
    status: str  # applied|skipped|warning|failed
    detail: str = ""


@dataclass(frozen=True)
class DeploymentVerdict:
    overall: Overall
    results: tuple[ProbeResult, ...]
    endpoints: Mapping[str, str] = field(default_factory=dict)
    primary_service: str = ""
    started_at: str = ""
    elapsed: float = 0.0
    timed_out: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "endpoints", MappingProxyType(dict(self.endpoints)))
        object.__setattr__(self, "results", tuple(self.results))

    def result_for(self, service_name: str) -> ProbeResult | None:
        for r in self.results:
            if r.service_name == service_name:
                return r
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "overall": self.overall.value,
            "primary_service": self.primary_service,
            "started_at": self.started_at,
            "elapsed": round(self.elapsed, 3),
            "timed_out": self.timed_out,
            "results": [r.to_dict() for r in self.results],
            "endpoints": dict(self.endpoints),
        }


def canonical_url(endpoint: str, protocol: str = "http") -> str:
    """Base URL for an endpoint: ``http://host:port`` or ``tcp://host:port``."""
    if protocol == "tcp":
        return f"tcp://{endpoint}"
    parts = urlsplit(endpoint)
    if not parts.scheme or not parts.netloc:
        return endpoint
    return f"{parts.scheme}://{parts.netloc}"


def split_host_port(endpoint: str) -> tuple[str, int]:
    host, sep, port = endpoint.rpartition(":")
    if not sep or not host or not port.isdigit():
        raise ValueError(f"Expected host:port, got {endpoint!r}")
    return host.strip("[]"), int(port)


def require_http_url(url: str) -> None:
    parts = urlsplit(url)
    if parts.scheme not in {"http", "https"} or not parts.netloc:
        raise ValueError(f"Expected an absolute http(s) URL, got {url!r}")
