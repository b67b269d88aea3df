from __future__ import annotations

from dataclasses import dataclass, field

from . import db, docker_ops, stack
from .alerts import alert_on_verdict
from .api_models import load_endpoint_table
from .models import AppliedAction, DeploymentVerdict, Overall
from .orchestrator import HealthOrchestrator
from .reconciler import ReconcileError, StateReconciler
from .report import render
from .settings import Settings, settings

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_RECONCILE_ERROR = 2
EXIT_COMPOSE_ERROR = 3


@dataclass
class PipelineResult:
    exit_code: int
    report: str
    verdict: DeploymentVerdict | None = None
    applied: list[AppliedAction] = field(default_factory=list)


def load_checks(cfg: Settings = settings) -> stack.StackChecks:
    """Endpoint table from DVR_ENDPOINTS_FILE if set, else the default stack."""
    if not cfg.endpoints_file:
        return stack.default_checks(cfg)
    table = load_endpoint_table(cfg.endpoints_file)
    return stack.StackChecks(
        primary_service=table.primary_service,
        probes=[p.to_spec() for p in table.probes],
        aux_checks=[a.to_check() for a in table.aux_checks],
    )


def verify(
    checks: stack.StackChecks,
    settle_delay_s: float | None = None,
    budget_s: float | None = None,
    orchestrator: HealthOrchestrator | None = None,
) -> tuple[DeploymentVerdict, str]:
    """Probe the running stack, record the run and render the report."""
    orch = orchestrator or HealthOrchestrator(checks.primary_service, budget=budget_s)
    delay = settings.settle_delay_s if settle_delay_s is None else settle_delay_s
    verdict = orch.run(checks.probes, global_settle_delay=delay, aux_checks=checks.aux_checks)
    text = render(verdict)
    try:
        db.record_run(verdict.to_dict())
    except db.DB_ERRORS as e:
        db.try_log_event("ERROR", f"Could not record run: {type(e).__name__}: {e}")
    alert_on_verdict(verdict, text)
    return verdict, text


def deploy(cfg: Settings = settings, cleanup: bool = True, start_stack: bool = True) -> PipelineResult:
    """Reconcile on-disk state, restart the stack, verify it.

    A bad endpoint table raises ValueError before anything is touched. A
    reconcile error aborts before anything is started. A Failed verdict
    still produces a full report.
    """
    checks = load_checks(cfg)
    try:
        applied = StateReconciler().reconcile(cfg.root_path, stack.default_template(cfg), cleanup=cleanup)
    except ReconcileError as e:
        lines = [f"RECONCILE FAILED: {e}"]
        lines += [f"  {a.item.action.value} {a.item.target_path}: {a.detail}" for a in e.failures]
        return PipelineResult(EXIT_RECONCILE_ERROR, "\n".join(lines) + "\n")

    if start_stack:
        docker_ops.remove_containers(stack.stale_container_names(cfg))
        try:
            docker_ops.compose_up(cfg.compose_file, project_dir=cfg.root_path)
        except docker_ops.ComposeError as e:
            db.try_log_event("ERROR", str(e))
            return PipelineResult(EXIT_COMPOSE_ERROR, f"COMPOSE FAILED: {e}\n", applied=applied)

    verdict, text = verify(checks, settle_delay_s=cfg.settle_delay_s, budget_s=cfg.run_budget_s)
    code = EXIT_FAILED if verdict.overall is Overall.FAILED else EXIT_OK
    return PipelineResult(code, text, verdict=verdict, applied=applied)
