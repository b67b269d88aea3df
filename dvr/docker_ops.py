from __future__ import annotations

import re
import subprocess
from dataclasses import dataclass

import docker
from docker.errors import APIError, DockerException, NotFound

from .db import log_event


CONTAINER_NAME_RE = re.compile(r"^[a-zA-Z0-9][a-zA-Z0-9_.\-]{0,127}$")


class ComposeError(RuntimeError):
    pass


def validate_container_name(name: str) -> None:
    if not CONTAINER_NAME_RE.match(name):
        raise ValueError(f"Invalid container name {name!r}.")


@dataclass(frozen=True)
class ContainerRef:
    id: str
    name: str


def _client() -> docker.DockerClient:
    return docker.from_env()


def docker_available() -> bool:
    try:
        c = _client()
        c.ping()
        return True
    except DockerException:
        return False


def remove_containers(names: list[str]) -> list[ContainerRef]:
    """Force-remove leftover containers with these fixed names.

    Compose refuses to create a container whose name is taken by a stale
    one from a previous run. Missing containers are ignored.
    """
    for n in names:
        validate_container_name(n)
    if not docker_available():
        log_event("WARN", "Docker is not available; skipping stale container cleanup.")
        return []

    c = _client()
    removed: list[ContainerRef] = []
    for name in names:
        try:
            cont = c.containers.get(name)
        except NotFound:
            continue
        try:
            cont.remove(force=True)
        except NotFound:
            continue
        except APIError as e:
            log_event("WARN", f"Could not remove container {name}: {e}")
            continue
        removed.append(ContainerRef(id=cont.id, name=name))
        log_event("INFO", f"Removed stale container {name}")
    return removed


def compose_up(compose_file: str, project_dir: str | None = None, timeout_s: int = 600) -> None:
    _compose(["-f", compose_file, "up", "-d", "--remove-orphans"], project_dir, timeout_s)
    log_event("INFO", f"Stack started from {compose_file}")


def compose_down(compose_file: str, project_dir: str | None = None, timeout_s: int = 300) -> None:
    _compose(["-f", compose_file, "down"], project_dir, timeout_s)
    log_event("INFO", f"Stack stopped from {compose_file}")


def _compose(args: list[str], project_dir: str | None, timeout_s: int) -> None:
    cmd = ["docker", "compose", *args]
    try:
        proc = subprocess.run(cmd, cwd=project_dir, capture_output=True, text=True, timeout=timeout_s)
    except (OSError, subprocess.TimeoutExpired) as e:
        raise ComposeError(f"{' '.join(cmd)} failed: {e}") from e
    if proc.returncode != 0:
        raise ComposeError(f"{' '.join(cmd)} exited {proc.returncode}: {proc.stderr.strip()[-500:]}")
