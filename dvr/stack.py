"""Default stack definition: the services we verify and the files they need.

The stack is an application under test plus its monitoring sidecars
(Prometheus, Grafana, node exporter) and a database.
"""
from __future__ import annotations

from dataclasses import dataclass

from .models import AuxCheck, Kind, PathSpec, ProbeSpec
from .settings import Settings, settings

PROMETHEUS_CONFIG = """\
global:
  scrape_interval: 15s
  evaluation_interval: 15s

rule_files:
  - /etc/prometheus/alert_rules.yml

scrape_configs:
  - job_name: prometheus
    static_configs:
      - targets: ['localhost:9090']

  - job_name: node-exporter
    static_configs:
      - targets: ['node-exporter:9100']

  - job_name: {app_name}
    metrics_path: /actuator/prometheus
    static_configs:
      - targets: ['{app_name}:{app_port}']
"""

ALERT_RULES = """\
groups:
  - name: {app_name}-alerts
    rules:
      - alert: ApplicationDown
        expr: up{{job="{app_name}"}} == 0
        for: 1m
        labels:
          severity: critical
        annotations:
          summary: "{app_name} is down"

      - alert: HighCpuUsage
        expr: 100 - (avg by(instance) (rate(node_cpu_seconds_total{{mode="idle"}}[5m])) * 100) > 80
        for: 5m
        labels:
          severity: warning
        annotations:
          summary: "CPU usage above 80% on {{{{ $labels.instance }}}}"

      - alert: HighMemoryUsage
        expr: (1 - node_memory_MemAvailable_bytes / node_memory_MemTotal_bytes) * 100 > 85
        for: 5m
        labels:
          severity: warning
        annotations:
          summary: "Memory usage above 85% on {{{{ $labels.instance }}}}"
"""

GRAFANA_DATASOURCE = """\
apiVersion: 1

datasources:
  - name: Prometheus
    type: prometheus
    access: proxy
    url: http://prometheus:9090
    isDefault: true
"""


@dataclass(frozen=True)
class StackChecks:
    primary_service: str
    probes: list[ProbeSpec]
    aux_checks: list[AuxCheck]


def default_checks(cfg: Settings = settings) -> StackChecks:
    app = f"http://{cfg.app_host}:{cfg.app_port}"
    host = cfg.app_host
    probes = [
        ProbeSpec(
            service_name=cfg.app_name,
            primary_url_or_endpoint=f"{app}/actuator/health",
            expected_pattern='"status":"UP"',
            max_attempts=12,
            retry_interval=10.0,
            # Older builds have no actuator; the landing page still proves the app serves.
            fallback=ProbeSpec(
                service_name=cfg.app_name,
                primary_url_or_endpoint=f"{app}/",
                expected_pattern=cfg.app_name,
                max_attempts=3,
                retry_interval=5.0,
            ),
        ),
        ProbeSpec(
            service_name="grafana",
            primary_url_or_endpoint=f"http://{host}:{cfg.grafana_port}/api/health",
            expected_pattern='"database": "ok"',
            max_attempts=6,
            retry_interval=5.0,
            fallback=ProbeSpec(
                service_name="grafana",
                primary_url_or_endpoint=f"http://{host}:{cfg.grafana_port}/login",
                expected_pattern="Grafana",
                max_attempts=2,
                retry_interval=5.0,
            ),
            degraded_on_fallback=True,
        ),
        ProbeSpec(
            service_name="prometheus",
            primary_url_or_endpoint=f"http://{host}:{cfg.prometheus_port}/-/ready",
            expected_pattern="Ready",
            max_attempts=6,
            retry_interval=5.0,
            fallback=ProbeSpec(
                service_name="prometheus",
                primary_url_or_endpoint=f"http://{host}:{cfg.prometheus_port}/-/healthy",
                expected_pattern="Healthy",
                max_attempts=2,
                retry_interval=5.0,
            ),
        ),
    ]
    aux_checks = [
        AuxCheck(
            service_name="node-exporter",
            kind="metrics",
            target=f"http://{host}:{cfg.node_exporter_port}/metrics",
            expected_pattern="node_cpu_seconds_total",
        ),
        AuxCheck(service_name="database", kind="tcp", target=f"{host}:{cfg.db_port}"),
    ]
    return StackChecks(primary_service=cfg.app_name, probes=probes, aux_checks=aux_checks)


def default_template(cfg: Settings = settings) -> list[PathSpec]:
    fmt = {"app_name": cfg.app_name, "app_port": cfg.app_port}
    return [
        PathSpec("logs", Kind.DIRECTORY, mode=0o777),
        PathSpec("data", Kind.DIRECTORY),
        PathSpec("monitoring/prometheus", Kind.DIRECTORY),
        PathSpec("monitoring/prometheus/prometheus.yml", Kind.FILE, PROMETHEUS_CONFIG.format(**fmt), mode=0o644),
        PathSpec("monitoring/prometheus/alert_rules.yml", Kind.FILE, ALERT_RULES.format(**fmt), mode=0o644),
        PathSpec("monitoring/grafana/provisioning/datasources", Kind.DIRECTORY),
        PathSpec("monitoring/grafana/provisioning/datasources/datasource.yml", Kind.FILE, GRAFANA_DATASOURCE, mode=0o644),
        # Grafana runs as uid 472 and must own its data dir; chmod is best-effort.
        PathSpec("monitoring/grafana/data", Kind.DIRECTORY, mode=0o777),
    ]


def stale_container_names(cfg: Settings = settings) -> list[str]:
    return [n.strip() for n in cfg.stale_containers.split(",") if n.strip()]
