from __future__ import annotations

import json

from .models import DeploymentVerdict, Outcome, Overall

HINTS: dict[Overall, str] = {
    Overall.ALL_HEALTHY: (
        "All services are healthy. The deployment is ready for traffic."
    ),
    Overall.PARTIAL_DEGRADATION: (
        "The application is up but some services are degraded or unreachable.\n"
        "Check the monitoring containers with `docker compose ps` and `docker compose logs <service>`;\n"
        "re-run verification once they have finished starting."
    ),
    Overall.FAILED: (
        "The application under test did not become healthy. The deployment FAILED.\n"
        "Inspect `docker compose logs {primary}`, confirm the artifact was built,\n"
        "and check that nothing else is bound to its port before redeploying."
    ),
}

MARKS = {
    Outcome.HEALTHY: "OK  ",
    Outcome.DEGRADED: "WARN",
    Outcome.UNREACHABLE: "FAIL",
}


def render(verdict: DeploymentVerdict) -> str:
    """Human readable deployment summary.

    Deterministic: the same verdict always renders the same text.
    """
    lines: list[str] = []
    lines.append("=" * 60)
    lines.append(f"DEPLOYMENT VERDICT: {verdict.overall.value}")
    if verdict.timed_out:
        lines.append("(health check time budget exhausted before every service resolved)")
    lines.append("=" * 60)

    lines.append("")
    lines.append("Services:")
    for r in verdict.results:
        primary = " [primary]" if r.service_name == verdict.primary_service else ""
        via = ", via fallback" if r.via_fallback else ""
        lines.append(
            f"  [{MARKS[r.outcome]}] {r.service_name}{primary}: {r.outcome.value} "
            f"({r.attempts_used} attempt(s){via}, {r.elapsed:.1f}s)"
        )
        if r.endpoint:
            lines.append(f"         checked: {r.endpoint}")
        if r.outcome is not Outcome.HEALTHY:
            if r.detail:
                lines.append(f"         detail: {r.detail}")
            if r.last_response_snippet:
                snippet = " ".join(r.last_response_snippet.split())
                lines.append(f"         last response: {snippet}")

    lines.append("")
    lines.append("Endpoints:")
    for name in sorted(verdict.endpoints):
        lines.append(f"  {name}: {verdict.endpoints[name]}")

    lines.append("")
    lines.append("Next steps:")
    hint = HINTS[verdict.overall].format(primary=verdict.primary_service or "<app>")
    for line in hint.splitlines():
        lines.append(f"  {line}")

    lines.append("")
    lines.append("Useful commands:")
    lines.append("  docker compose ps")
    lines.append("  docker compose logs -f <service>")
    lines.append("  docker compose restart <service>")
    lines.append(f"  docker compose up -d --scale {verdict.primary_service or '<app>'}=<n>")
    lines.append("  docker compose down")
    return "\n".join(lines) + "\n"


def render_json(verdict: DeploymentVerdict) -> str:
    return json.dumps(verdict.to_dict(), indent=2, sort_keys=True, ensure_ascii=False)
