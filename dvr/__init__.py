"""Deployment Verifier & Reconciler (DVR).

Runs around a `docker compose` redeploy and answers three questions:
 - is the on-disk deployment state clean (reconciler)
 - is every service of the restarted stack healthy (probe / orchestrator)
 - what should the operator do next (report)

Retries, fallbacks and the overall time budget are explicit values, so a
verification run is bounded and reproducible.
"""
