from __future__ import annotations

import argparse
import json
import os
import sys
from dataclasses import replace

import requests

from dvr import docker_ops, pipeline, stack
from dvr.models import Overall
from dvr.reconciler import ReconcileError, StateReconciler
from dvr.report import render_json
from dvr.settings import settings

EXIT_USAGE = 4


def _print(obj) -> None:
    print(json.dumps(obj, indent=2, ensure_ascii=False))


def _auth() -> tuple[str, str] | None:
    password = os.getenv("DVR_ADMIN_PASSWORD")
    return (settings.admin_user, password) if password else None


def main(argv: list[str] | None = None) -> int:
    p = argparse.ArgumentParser(description="Deployment Verifier & Reconciler CLI")
    p.add_argument("--api", default="http://localhost:8000", help="API base URL (runs/events commands)")
    p.add_argument("--root", default=None, help="Deployment root (default: DVR_ROOT)")
    sub = p.add_subparsers(dest="cmd", required=True)

    s_rec = sub.add_parser("reconcile", help="Repair on-disk deployment state")
    s_rec.add_argument("--cleanup", action="store_true", help="Rewrite default files even if present")

    s_ver = sub.add_parser("verify", help="Probe the running stack and print the report")
    s_ver.add_argument("--settle-delay-s", type=float, default=None)
    s_ver.add_argument("--budget-s", type=float, default=None)
    s_ver.add_argument("--json", action="store_true", help="Print the verdict as JSON")

    s_dep = sub.add_parser("deploy", help="Reconcile, restart the stack with docker compose, verify")
    s_dep.add_argument("--no-cleanup", action="store_true", help="Keep operator edits to default files")
    s_dep.add_argument("--no-start", action="store_true", help="Do not touch containers; only reconcile and verify")
    s_dep.add_argument("--compose-file", default=None)

    s_down = sub.add_parser("down", help="Stop the stack with docker compose down")
    s_down.add_argument("--compose-file", default=None)

    s_runs = sub.add_parser("runs", help="Show recent verification runs (from the API)")
    s_runs.add_argument("--limit", type=int, default=10)

    s_ev = sub.add_parser("events", help="Show events (from the API)")
    s_ev.add_argument("--limit", type=int, default=20)

    args = p.parse_args(argv)

    cfg = settings
    if args.root:
        cfg = replace(cfg, root_path=args.root)

    if args.cmd == "reconcile":
        try:
            applied = StateReconciler().reconcile(cfg.root_path, stack.default_template(cfg), cleanup=args.cleanup)
        except ReconcileError as e:
            print(f"RECONCILE FAILED: {e}", file=sys.stderr)
            return pipeline.EXIT_RECONCILE_ERROR
        _print([
            {"action": a.item.action.value, "path": a.item.target_path, "status": a.status, "detail": a.detail}
            for a in applied
        ])
        return 0

    if args.cmd == "verify":
        try:
            checks = pipeline.load_checks(cfg)
        except (OSError, ValueError) as e:
            print(f"Bad endpoint table {cfg.endpoints_file}: {e}", file=sys.stderr)
            return EXIT_USAGE
        verdict, text = pipeline.verify(checks, settle_delay_s=args.settle_delay_s, budget_s=args.budget_s)
        print(render_json(verdict) if args.json else text)
        return pipeline.EXIT_FAILED if verdict.overall is Overall.FAILED else 0

    if args.cmd == "deploy":
        if args.compose_file:
            cfg = replace(cfg, compose_file=args.compose_file)
        try:
            result = pipeline.deploy(cfg, cleanup=not args.no_cleanup, start_stack=not args.no_start)
        except (OSError, ValueError) as e:
            print(f"Bad endpoint table {cfg.endpoints_file}: {e}", file=sys.stderr)
            return EXIT_USAGE
        print(result.report)
        return result.exit_code

    if args.cmd == "down":
        try:
            docker_ops.compose_down(args.compose_file or cfg.compose_file, project_dir=cfg.root_path)
        except docker_ops.ComposeError as e:
            print(f"COMPOSE FAILED: {e}", file=sys.stderr)
            return pipeline.EXIT_COMPOSE_ERROR
        return 0

    base = args.api.rstrip("/")

    if args.cmd == "runs":
        r = requests.get(f"{base}/runs", params={"limit": args.limit}, auth=_auth(), timeout=10)
        _print(r.json())
        return 0 if r.ok else 1

    if args.cmd == "events":
        r = requests.get(f"{base}/events", params={"limit": args.limit}, auth=_auth(), timeout=10)
        _print(r.json())
        return 0 if r.ok else 1

    return EXIT_USAGE


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
