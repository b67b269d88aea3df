import dataclasses
import os as _os
import sys

import pytest

# Ensure project root is importable (so `import main`, `import cli` and `examples...` work)
_project_root = _os.path.dirname(_os.path.dirname(__file__))
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

from dvr import db  # noqa: E402
from dvr.health import HttpResponse, NetworkError  # noqa: E402


@pytest.fixture(autouse=True)
def isolated_db(tmp_path_factory, monkeypatch):
    """Every test writes its event log into its own sqlite file, outside tmp_path."""
    path = tmp_path_factory.mktemp("db") / "events.db"
    monkeypatch.setattr(db, "settings", dataclasses.replace(db.settings, db_path=str(path)))
    return path


class FakeNet:
    """Scripted network collaborator.

    ``routes`` maps a URL (or host:port) to a list of replies consumed in
    order; the last reply repeats. A reply is an HttpResponse, a string body
    (status 200) or an exception instance to raise.
    """

    def __init__(self, routes=None):
        self.routes = {k: list(v) for k, v in (routes or {}).items()}
        self.calls = []

    def _next(self, key):
        self.calls.append(key)
        replies = self.routes.get(key)
        if not replies:
            raise NetworkError(f"connection refused: {key}")
        reply = replies.pop(0) if len(replies) > 1 else replies[0]
        if isinstance(reply, Exception):
            raise reply
        return reply

    def http_get(self, url, connect_timeout=None, total_timeout=None):
        reply = self._next(url)
        if isinstance(reply, str):
            return HttpResponse(status=200, body=reply)
        return reply

    def tcp_connect(self, host, port, timeout=None):
        self._next(f"{host}:{port}")

    def count(self, key):
        return sum(1 for c in self.calls if c == key)


@pytest.fixture
def fake_net():
    return FakeNet()
