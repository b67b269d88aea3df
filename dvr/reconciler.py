from __future__ import annotations

import os
from types import ModuleType
from typing import Iterable

from . import db, fs_ops
from .models import Action, AppliedAction, Kind, PathSpec, PlanItem


class ReconcileError(Exception):
    """Deployment state could not be brought to the expected shape."""

    def __init__(self, message: str, failures: list[AppliedAction] | None = None):
        super().__init__(message)
        self.failures = failures or []


class PathUnwritable(ReconcileError):
    pass


def validate_target_path(path: str) -> None:
    # Plans are relative to the root; never let a template reach outside it.
    if not path or os.path.isabs(path):
        raise ValueError(f"Plan path must be relative, got {path!r}")
    if ".." in os.path.normpath(path).split(os.sep):
        raise ValueError(f"Plan path must stay inside the root, got {path!r}")


def build_plan(template: Iterable[PathSpec]) -> list[PlanItem]:
    """Expand template entries into an ordered ReconciliationPlan."""
    plan: list[PlanItem] = []
    for spec in template:
        validate_target_path(spec.path)
        if spec.kind is Kind.NONE:
            raise ValueError(f"{spec.path}: template entries must be a file or a directory")
        plan.append(PlanItem(Action.REMOVE_IF_WRONG_TYPE, spec.path, spec.kind))
        if spec.kind is Kind.DIRECTORY:
            plan.append(PlanItem(Action.ENSURE_DIRECTORY, spec.path, Kind.DIRECTORY))
        else:
            parent = os.path.dirname(spec.path)
            if parent:
                plan.append(PlanItem(Action.ENSURE_DIRECTORY, parent, Kind.DIRECTORY))
            plan.append(PlanItem(Action.WRITE_DEFAULT_FILE, spec.path, Kind.FILE, payload=spec.content or ""))
        if spec.mode is not None:
            plan.append(PlanItem(Action.SET_PERMISSIONS, spec.path, spec.kind, mode=spec.mode))
    return plan


class StateReconciler:
    """Brings a directory tree to a known-good shape before deployment.

    Every item is applied on its own: a failing item does not stop the
    independent items after it. Failures to create, remove or write are
    fatal and raised as PathUnwritable once the whole plan has been
    attempted; permission failures are only warnings.

    With ``cleanup=True`` default files are rewritten even when present,
    which restores a known baseline after an incident. Otherwise operator
    edits to existing files are kept.
    """

    def __init__(self, fs: ModuleType = fs_ops):
        self.fs = fs

    def reconcile(self, root_path: str, plan_template: Iterable[PathSpec], cleanup: bool = False) -> list[AppliedAction]:
        plan = build_plan(plan_template)
        root = os.path.abspath(root_path)
        try:
            self.fs.create_directory(root)
        except OSError as e:
            raise PathUnwritable(f"Root {root} is not writable: {e}") from e

        applied: list[AppliedAction] = []
        for item in plan:
            applied.append(self._apply(root, item, cleanup))

        failures = [a for a in applied if a.status == "failed"]
        if failures:
            paths = ", ".join(a.item.target_path for a in failures)
            db.log_event("ERROR", f"Reconcile failed for: {paths}")
            raise PathUnwritable(f"Could not reconcile: {paths}", failures=failures)

        changed = sum(1 for a in applied if a.status == "applied")
        db.log_event("INFO", f"Reconciled {root}: {changed} change(s), {len(plan)} planned action(s)")
        return applied

    def _apply(self, root: str, item: PlanItem, cleanup: bool) -> AppliedAction:
        full = os.path.join(root, item.target_path)
        try:
            if item.action is Action.REMOVE_IF_WRONG_TYPE:
                kind = self.fs.exists(full)
                if kind is Kind.NONE or (kind is item.expected_kind and not self.fs.is_broken_link(full)):
                    return AppliedAction(item, "skipped")
                what = "broken link" if self.fs.is_broken_link(full) else kind.value
                self.fs.remove_recursive(full)
                db.log_event("WARN", f"Removed stale {what} at {item.target_path} (expected {item.expected_kind.value})")
                return AppliedAction(item, "applied", f"removed stale {what}")

            if item.action is Action.ENSURE_DIRECTORY:
                if self.fs.exists(full) is Kind.DIRECTORY:
                    return AppliedAction(item, "skipped")
                self.fs.create_directory(full)
                return AppliedAction(item, "applied", "created")

            if item.action is Action.WRITE_DEFAULT_FILE:
                if self.fs.exists(full) is Kind.FILE and not cleanup:
                    return AppliedAction(item, "skipped", "kept existing file")
                self.fs.write_file(full, item.payload or "")
                return AppliedAction(item, "applied", "wrote default content")

            if item.action is Action.SET_PERMISSIONS:
                return self._set_permissions(full, item)
        except OSError as e:
            return AppliedAction(item, "failed", f"{type(e).__name__}: {e}")

        raise ValueError(f"Unknown plan action {item.action!r}")

    def _set_permissions(self, full: str, item: PlanItem) -> AppliedAction:
        if item.mode is None:
            return AppliedAction(item, "skipped")
        try:
            self.fs.set_permissions(full, item.mode)
        except OSError as e:
            # Hosts differ (rootless docker, mounted volumes); never fatal.
            db.log_event("WARN", f"chmod {oct(item.mode)} {item.target_path} failed: {e}")
            return AppliedAction(item, "warning", f"{type(e).__name__}: {e}")
        return AppliedAction(item, "applied", f"mode {oct(item.mode)}")
