import dataclasses
import json
import sqlite3
import threading

import pytest

from dvr import db, docker_ops, orchestrator, pipeline
from dvr.health import HttpResponse, NetworkError
from dvr.models import Overall
from dvr.probe import ServiceProbe
from dvr.settings import settings


@pytest.fixture
def cfg(tmp_path):
    return dataclasses.replace(settings, root_path=str(tmp_path / "deploy"), endpoints_file=None, app_host="h", settle_delay_s=0)


@pytest.fixture
def no_docker(monkeypatch):
    calls = []
    monkeypatch.setattr(docker_ops, "remove_containers", lambda names: calls.append(("rm", names)) or [])
    monkeypatch.setattr(docker_ops, "compose_up", lambda f, project_dir=None: calls.append(("up", f, project_dir)))
    return calls


def _net(monkeypatch, up: set):
    def http_get(url, *a):
        if url in up:
            return HttpResponse(200, up_bodies.get(url, "ok"))
        raise NetworkError("refused")

    def tcp_connect(host, port, timeout=None):
        if f"{host}:{port}" not in up:
            raise NetworkError("refused")

    up_bodies = {
        "http://h:8080/actuator/health": '{"status":"UP"}',
        "http://h:3000/api/health": '{"database": "ok"}',
        "http://h:9090/-/ready": "Prometheus Server is Ready.",
        "http://h:9100/metrics": "node_cpu_seconds_total 1",
    }
    monkeypatch.setattr(orchestrator, "ServiceProbe", lambda *a, **k: ServiceProbe(http_get=http_get, tcp_connect=tcp_connect))


ALL_UP = {
    "http://h:8080/actuator/health",
    "http://h:3000/api/health",
    "http://h:9090/-/ready",
    "http://h:9100/metrics",
    "h:3306",
}


def test_deploy_all_healthy(cfg, no_docker, monkeypatch):
    _net(monkeypatch, ALL_UP)
    result = pipeline.deploy(cfg)

    assert result.exit_code == pipeline.EXIT_OK
    assert result.verdict.overall is Overall.ALL_HEALTHY
    assert "DEPLOYMENT VERDICT: AllHealthy" in result.report
    assert no_docker[0] == ("rm", ["demo-app", "prometheus", "grafana", "node-exporter", "mysql"])
    assert no_docker[1][0] == "up"
    assert any(a.item.target_path.endswith("alert_rules.yml") for a in result.applied)


def test_deploy_primary_down_exits_failed(cfg, no_docker, monkeypatch):
    _net(monkeypatch, ALL_UP - {"http://h:8080/actuator/health"})
    # the app probe would retry for minutes; the run budget cuts it short
    try:
        result = pipeline.deploy(dataclasses.replace(cfg, run_budget_s=0.5))
    finally:
        for t in threading.enumerate():
            if t.name.startswith("dvr-probe"):
                t.join(2)

    assert result.exit_code == pipeline.EXIT_FAILED
    assert result.verdict.overall is Overall.FAILED
    assert "DEPLOYMENT VERDICT: Failed" in result.report


def test_reconcile_error_aborts_before_compose(cfg, no_docker, tmp_path):
    (tmp_path / "deploy").write_text("file where the root should be")
    result = pipeline.deploy(cfg)

    assert result.exit_code == pipeline.EXIT_RECONCILE_ERROR
    assert result.verdict is None
    assert "RECONCILE FAILED" in result.report
    assert no_docker == []


def test_compose_error_is_reported(cfg, monkeypatch):
    monkeypatch.setattr(docker_ops, "remove_containers", lambda names: [])

    def boom(f, project_dir=None):
        raise docker_ops.ComposeError("docker compose up exited 1: no such image")

    monkeypatch.setattr(docker_ops, "compose_up", boom)
    result = pipeline.deploy(cfg)
    assert result.exit_code == pipeline.EXIT_COMPOSE_ERROR
    assert "no such image" in result.report


def test_load_checks_from_endpoints_file(tmp_path, cfg):
    path = tmp_path / "endpoints.json"
    path.write_text(
        json.dumps(
            {
                "primary_service": "api",
                "probes": [
                    {
                        "service_name": "api",
                        "endpoint": "http://api:8000/health",
                        "expected_pattern": "healthy",
                        "max_attempts": 5,
                        "retry_interval_s": 2,
                        "fallback": {"service_name": "api", "endpoint": "api:8000", "protocol": "tcp"},
                    }
                ],
                "aux_checks": [{"service_name": "redis", "kind": "tcp", "target": "redis:6379"}],
            }
        )
    )
    checks = pipeline.load_checks(dataclasses.replace(cfg, endpoints_file=str(path)))
    assert checks.primary_service == "api"
    spec = checks.probes[0]
    assert spec.max_attempts == 5
    assert spec.retry_interval == 2
    assert spec.fallback.protocol == "tcp"
    assert checks.aux_checks[0].target == "redis:6379"


def test_load_checks_default_stack(cfg):
    checks = pipeline.load_checks(cfg)
    assert checks.primary_service == "demo-app"
    assert [p.service_name for p in checks.probes] == ["demo-app", "grafana", "prometheus"]
    assert checks.probes[0].fallback.primary_url_or_endpoint == "http://h:8080/"
    assert [a.service_name for a in checks.aux_checks] == ["node-exporter", "database"]


def test_unrecordable_run_still_renders_report(cfg, no_docker, monkeypatch):
    def locked(verdict):
        raise sqlite3.OperationalError("database is locked")

    monkeypatch.setattr(db, "record_run", locked)
    _net(monkeypatch, ALL_UP)
    result = pipeline.deploy(cfg)

    assert result.exit_code == pipeline.EXIT_OK
    assert "DEPLOYMENT VERDICT: AllHealthy" in result.report
    assert any("Could not record run" in e["message"] for e in db.latest_events())


def test_bad_endpoint_table_fails_before_touching_anything(cfg, no_docker, tmp_path):
    path = tmp_path / "endpoints.json"
    path.write_text(json.dumps({"primary_service": "api", "probes": [{"service_name": "api", "endpoint": "/health"}]}))

    with pytest.raises(ValueError):
        pipeline.deploy(dataclasses.replace(cfg, endpoints_file=str(path)))
    assert no_docker == []
    assert not (tmp_path / "deploy").exists()
