from __future__ import annotations

import json
from typing import Literal, Optional

from pydantic import BaseModel, Field

from .models import AuxCheck, ProbeSpec


class ProbeSpecIn(BaseModel):
    service_name: str = Field(..., min_length=1, description="Service the probe belongs to")
    endpoint: str = Field(..., description="URL for http probes, host:port for tcp probes")
    expected_pattern: str = Field("", description="Substring (or regex) the response body must contain")
    max_attempts: int = Field(1, ge=1, le=1000)
    retry_interval_s: float = Field(0.0, ge=0, le=3600)
    protocol: Literal["http", "tcp"] = "http"
    match: Literal["substring", "regex"] = "substring"
    backoff: float = Field(1.0, ge=1.0, le=10.0)
    max_interval_s: Optional[float] = Field(None, ge=0)
    degraded_on_fallback: bool = False
    fallback: Optional[ProbeSpecIn] = None

    def to_spec(self) -> ProbeSpec:
        return ProbeSpec(
            service_name=self.service_name,
            primary_url_or_endpoint=self.endpoint,
            expected_pattern=self.expected_pattern,
            max_attempts=self.max_attempts,
            retry_interval=self.retry_interval_s,
            fallback=self.fallback.to_spec() if self.fallback else None,
            protocol=self.protocol,
            match=self.match,
            backoff=self.backoff,
            max_interval=self.max_interval_s,
            degraded_on_fallback=self.degraded_on_fallback,
        )


class AuxCheckIn(BaseModel):
    service_name: str = Field(..., min_length=1)
    kind: Literal["metrics", "tcp"]
    target: str
    expected_pattern: str = ""

    def to_check(self) -> AuxCheck:
        return AuxCheck(
            service_name=self.service_name,
            kind=self.kind,
            target=self.target,
            expected_pattern=self.expected_pattern,
        )


class EndpointTable(BaseModel):
    primary_service: str = Field(..., min_length=1, description="Application under test")
    probes: list[ProbeSpecIn] = Field(default_factory=list)
    aux_checks: list[AuxCheckIn] = Field(default_factory=list)


class VerifyRequest(BaseModel):
    settle_delay_s: Optional[float] = Field(None, ge=0, le=3600)
    budget_s: Optional[float] = Field(None, gt=0, le=24 * 3600)
    table: Optional[EndpointTable] = None


class ReconcileRequest(BaseModel):
    root_path: Optional[str] = None
    cleanup: bool = False


def load_endpoint_table(path: str) -> EndpointTable:
    with open(path, "r", encoding="utf-8") as fh:
        return EndpointTable.model_validate(json.load(fh))
