from __future__ import annotations

import os

from fastapi import FastAPI, HTTPException
from fastapi.responses import HTMLResponse, PlainTextResponse


APP_NAME = os.getenv("APP_NAME", "demo-app")

app = FastAPI(title=APP_NAME)

APP_STATE = {"status": "UP", "requests": 0}


@app.get("/", response_class=HTMLResponse)
def index() -> str:
    APP_STATE["requests"] += 1
    return f"<html><body><h1>{APP_NAME}</h1></body></html>"


@app.get("/actuator/health")
def actuator_health() -> dict[str, str]:
    if APP_STATE["status"] != "UP":
        raise HTTPException(status_code=503, detail={"status": APP_STATE["status"]})
    return {"status": "UP"}


@app.get("/actuator/prometheus", response_class=PlainTextResponse)
def actuator_prometheus() -> str:
    return (
        "# TYPE http_server_requests_seconds_count counter\n"
        f'http_server_requests_seconds_count{{uri="/"}} {APP_STATE["requests"]}\n'
    )


# Fault injection for exercising the verifier.
@app.post("/simulate/down")
def simulate_down() -> dict[str, str]:
    APP_STATE["status"] = "DOWN"
    return {"status": "DOWN"}


@app.post("/simulate/reset")
def simulate_reset() -> dict[str, str]:
    APP_STATE["status"] = "UP"
    return {"status": "UP"}
