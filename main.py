from __future__ import annotations

import secrets

from fastapi import Depends, FastAPI, HTTPException, status
from fastapi.responses import PlainTextResponse
from fastapi.security import HTTPBasic, HTTPBasicCredentials

from dvr import db, pipeline, stack
from dvr.api_models import ReconcileRequest, VerifyRequest
from dvr.reconciler import ReconcileError, StateReconciler
from dvr.settings import settings

app = FastAPI(title="Deployment Verifier & Reconciler")
security = HTTPBasic()

_last_report: dict[str, str] = {}


def get_current_username(credentials: HTTPBasicCredentials = Depends(security)) -> str:
    # No password configured means the API is locked.
    password = settings.admin_password or ""
    ok_user = secrets.compare_digest(credentials.username, settings.admin_user)
    ok_pass = bool(password) and secrets.compare_digest(credentials.password, password)
    if not (ok_user and ok_pass):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid credentials",
            headers={"WWW-Authenticate": "Basic"},
        )
    return credentials.username


@app.on_event("startup")
def startup() -> None:
    db.init_db()


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "healthy"}


@app.post("/reconcile")
def reconcile(req: ReconcileRequest, username: str = Depends(get_current_username)) -> dict:
    root = req.root_path or settings.root_path
    try:
        applied = StateReconciler().reconcile(root, stack.default_template(settings), cleanup=req.cleanup)
    except ReconcileError as e:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={
                "error": str(e),
                "failures": [{"path": a.item.target_path, "action": a.item.action.value, "detail": a.detail} for a in e.failures],
            },
        )
    db.log_event("INFO", f"Reconcile requested by {username}")
    return {
        "root_path": root,
        "actions": [
            {"action": a.item.action.value, "path": a.item.target_path, "status": a.status, "detail": a.detail}
            for a in applied
        ],
    }


@app.post("/verify")
def verify(req: VerifyRequest, username: str = Depends(get_current_username)) -> dict:
    try:
        if req.table is not None:
            checks = stack.StackChecks(
                primary_service=req.table.primary_service,
                probes=[p.to_spec() for p in req.table.probes],
                aux_checks=[a.to_check() for a in req.table.aux_checks],
            )
        else:
            checks = pipeline.load_checks(settings)
        verdict, text = pipeline.verify(checks, settle_delay_s=req.settle_delay_s, budget_s=req.budget_s)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    _last_report["text"] = text
    db.try_log_event("INFO", f"Verification requested by {username}: {verdict.overall.value}")
    return verdict.to_dict()


@app.get("/runs")
def runs(limit: int = 20, username: str = Depends(get_current_username)) -> list[dict]:
    return [
        {"id": r.id, "ts": r.ts, "overall": r.overall, "timed_out": r.timed_out, "verdict": r.verdict}
        for r in db.latest_runs(limit)
    ]


@app.get("/events")
def events(limit: int = 100, username: str = Depends(get_current_username)) -> list[dict]:
    return db.latest_events(limit)


@app.get("/report", response_class=PlainTextResponse)
def report(username: str = Depends(get_current_username)) -> str:
    if "text" in _last_report:
        return _last_report["text"]
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No verification has run yet")
