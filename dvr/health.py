from __future__ import annotations

import socket
from dataclasses import dataclass

import httpx


class NetworkError(Exception):
    """A probe could not get a response (refused, timed out, DNS, ...)."""


@dataclass(frozen=True)
class HttpResponse:
    status: int
    body: str


def http_get(
    url: str,
    connect_timeout: float = 3.0,
    total_timeout: float = 5.0,
    transport: httpx.BaseTransport | None = None,
) -> HttpResponse:
    """GET ``url`` and return status and body.

    Any status code counts as a response; only transport failures raise
    NetworkError. The connect timeout is kept short so dead hosts fail fast.
    """
    timeout = httpx.Timeout(total_timeout, connect=connect_timeout)
    try:
        with httpx.Client(timeout=timeout, follow_redirects=True, transport=transport) as client:
            resp = client.get(url)
        return HttpResponse(status=resp.status_code, body=resp.text)
    except (httpx.ConnectError, httpx.TimeoutException) as e:
        raise NetworkError(f"No response from {url}: {type(e).__name__}") from e
    except httpx.HTTPError as e:
        raise NetworkError(f"Error: {type(e).__name__}: {e}") from e


def tcp_connect(host: str, port: int, timeout: float = 3.0) -> None:
    try:
        with socket.create_connection((host, int(port)), timeout=timeout):
            pass
    except OSError as e:
        raise NetworkError(f"tcp {host}:{port} unreachable: {e}") from e
