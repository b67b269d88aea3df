import json

import pytest

from dvr.models import DeploymentVerdict, Outcome, Overall, ProbeResult
from dvr.report import render, render_json


def _verdict(overall, app_outcome=Outcome.HEALTHY, timed_out=False):
    return DeploymentVerdict(
        overall=overall,
        results=(
            ProbeResult("demo-app", app_outcome, 3, '{"status":"DOWN"}', 21.0, endpoint="http://h:8080/actuator/health", detail="HTTP 503"),
            ProbeResult("grafana", Outcome.HEALTHY, 1, None, 0.2, via_fallback=True, endpoint="http://h:3000/login"),
            ProbeResult("prometheus", Outcome.UNREACHABLE, 6, None, 30.0, endpoint="http://h:9090/-/ready", detail="connection refused"),
        ),
        endpoints={"prometheus": "http://h:9090", "demo-app": "http://h:8080", "grafana": "http://h:3000"},
        primary_service="demo-app",
        started_at="2026-01-01T00:00:00Z",
        elapsed=51.2,
        timed_out=timed_out,
    )


def test_render_is_deterministic():
    v = _verdict(Overall.PARTIAL_DEGRADATION)
    assert render(v) == render(_verdict(Overall.PARTIAL_DEGRADATION))


def test_render_lists_services_endpoints_and_hint():
    text = render(_verdict(Overall.PARTIAL_DEGRADATION))
    assert "DEPLOYMENT VERDICT: PartialDegradation" in text
    assert "demo-app [primary]: Healthy (3 attempt(s), 21.0s)" in text
    assert "grafana: Healthy (1 attempt(s), via fallback" in text
    assert "detail: connection refused" in text
    assert "  demo-app: http://h:8080" in text
    assert "some services are degraded or unreachable" in text
    assert "--scale demo-app=<n>" in text
    # endpoints sorted by name
    assert text.index("  demo-app: http://h:8080") < text.index("  prometheus: http://h:9090")


def test_failed_report_carries_diagnostics():
    text = render(_verdict(Overall.FAILED, app_outcome=Outcome.UNREACHABLE, timed_out=True))
    assert "DEPLOYMENT VERDICT: Failed" in text
    assert "time budget exhausted" in text
    assert 'last response: {"status":"DOWN"}' in text
    assert "docker compose logs demo-app" in text


def test_all_healthy_hint():
    text = render(_verdict(Overall.ALL_HEALTHY))
    assert "ready for traffic" in text


def test_render_json_is_machine_readable():
    data = json.loads(render_json(_verdict(Overall.FAILED, app_outcome=Outcome.UNREACHABLE)))
    assert data["overall"] == "Failed"
    assert data["results"][0]["outcome"] == "Unreachable"
    assert data["results"][1]["via_fallback"] is True
    assert data["endpoints"]["grafana"] == "http://h:3000"


def test_verdict_endpoints_are_read_only():
    endpoints = {"demo-app": "http://h:8080"}
    v = DeploymentVerdict(Overall.ALL_HEALTHY, (), endpoints=endpoints, primary_service="demo-app")
    endpoints["demo-app"] = "http://elsewhere"
    assert v.endpoints["demo-app"] == "http://h:8080"
    with pytest.raises(TypeError):
        v.endpoints["grafana"] = "http://h:3000"
