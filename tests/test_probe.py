import threading

import pytest

from dvr.health import HttpResponse, NetworkError
from dvr.models import AuxCheck, Outcome, ProbeSpec
from dvr.probe import ServiceProbe


def _probe(net, sleeps=None):
    return ServiceProbe(
        http_get=net.http_get,
        tcp_connect=net.tcp_connect,
        sleep=(sleeps.append if sleeps is not None else (lambda s: None)),
        connect_timeout=1,
        total_timeout=2,
        snippet_chars=20,
    )


def _app_spec(fallback=True):
    fb = ProbeSpec("app", "http://app:8080/", "AppName", max_attempts=2, retry_interval=10) if fallback else None
    return ProbeSpec("app", "http://app:8080/health", "UP", max_attempts=3, retry_interval=10, fallback=fb)


def test_fallback_matches_on_first_attempt(fake_net):
    fake_net.routes = {
        "http://app:8080/health": ['{"status":"DOWN"}'],
        "http://app:8080/": ["<h1>AppName</h1>"],
    }
    sleeps = []
    r = _probe(fake_net, sleeps).check(_app_spec())

    assert r.outcome is Outcome.HEALTHY
    assert r.attempts_used == 1
    assert r.via_fallback is True
    assert r.total_attempts == 4
    assert r.endpoint == "http://app:8080/"
    assert fake_net.count("http://app:8080/health") == 3
    # two sleeps between three primary attempts, none before the fallback
    assert sleeps == [10, 10]


def test_no_fallback_never_matching_is_unreachable(fake_net):
    fake_net.routes = {"http://app:8080/health": ['{"status":"DOWN","details":"database connection lost"}']}
    r = _probe(fake_net).check(_app_spec(fallback=False))

    assert r.outcome is Outcome.UNREACHABLE
    assert r.attempts_used == 3
    assert r.via_fallback is False
    assert r.last_response_snippet == '{"status":"DOWN","de'
    assert fake_net.count("http://app:8080/health") == 3


@pytest.mark.parametrize("k", [1, 2, 3])
def test_early_exit_on_attempt_k(fake_net, k):
    fake_net.routes = {"http://app:8080/health": ["starting"] * (k - 1) + ['{"status":"UP"}']}
    sleeps = []
    r = _probe(fake_net, sleeps).check(_app_spec())

    assert r.outcome is Outcome.HEALTHY
    assert r.attempts_used == k
    assert r.via_fallback is False
    assert fake_net.count("http://app:8080/") == 0
    assert len(sleeps) == k - 1


def test_network_errors_are_absorbed_and_snippet_empty(fake_net):
    fake_net.routes = {
        "http://app:8080/health": [NetworkError("refused")],
        "http://app:8080/": [NetworkError("refused")],
    }
    r = _probe(fake_net).check(_app_spec())

    assert r.outcome is Outcome.UNREACHABLE
    assert r.last_response_snippet is None
    assert r.total_attempts == 5
    assert r.attempts_used == 2
    assert "refused" in r.detail


def test_snippet_comes_from_most_recent_response(fake_net):
    fake_net.routes = {
        "http://app:8080/health": ["primary body"],
        "http://app:8080/": [NetworkError("refused")],
    }
    r = _probe(fake_net).check(_app_spec())
    assert r.outcome is Outcome.UNREACHABLE
    assert r.last_response_snippet == "primary body"


def test_degraded_on_fallback(fake_net):
    fake_net.routes = {"http://g:3000/login": ["Grafana"]}
    spec = ProbeSpec(
        "grafana",
        "http://g:3000/api/health",
        '"database": "ok"',
        max_attempts=2,
        fallback=ProbeSpec("grafana", "http://g:3000/login", "Grafana"),
        degraded_on_fallback=True,
    )
    r = _probe(fake_net).check(spec)
    assert r.outcome is Outcome.DEGRADED
    assert r.via_fallback is True


def test_tcp_protocol_fallback(fake_net):
    fake_net.routes = {"db:3306": [None]}
    spec = ProbeSpec("db", "http://db:8080/health", "UP", fallback=ProbeSpec("db", "db:3306", protocol="tcp"))
    r = _probe(fake_net).check(spec)
    assert r.outcome is Outcome.HEALTHY
    assert r.detail == "connected"


def test_empty_pattern_accepts_2xx_only(fake_net):
    fake_net.routes = {"http://x/": [HttpResponse(500, "oops"), HttpResponse(204, "")]}
    r = _probe(fake_net).check(ProbeSpec("x", "http://x/", max_attempts=2))
    assert r.outcome is Outcome.HEALTHY
    assert r.attempts_used == 2


def test_regex_match(fake_net):
    fake_net.routes = {"http://x/": ['{"status" : "UP"}']}
    spec = ProbeSpec("x", "http://x/", r'"status"\s*:\s*"UP"', match="regex")
    assert _probe(fake_net).check(spec).outcome is Outcome.HEALTHY


def test_backoff_delays_are_capped(fake_net):
    sleeps = []
    spec = ProbeSpec("x", "http://x/", "never", max_attempts=5, retry_interval=1, backoff=2.0, max_interval=5)
    _probe(fake_net, sleeps).check(spec)
    assert sleeps == [1, 2, 4, 5]


def test_cancel_stops_probe(fake_net):
    cancel = threading.Event()

    def http_get(url, *a):
        cancel.set()
        return HttpResponse(200, "nope")

    probe = ServiceProbe(http_get=http_get, tcp_connect=fake_net.tcp_connect)
    spec = ProbeSpec("x", "http://x/", "UP", max_attempts=10, retry_interval=60)
    r = probe.check(spec, cancel)
    assert r.outcome is Outcome.UNREACHABLE
    assert r.attempts_used == 1
    assert r.detail.startswith("cancelled")


def test_invalid_specs_rejected():
    with pytest.raises(ValueError):
        ProbeSpec("x", "http://x/", max_attempts=0)
    with pytest.raises(ValueError):
        ProbeSpec("x", "not-a-host-port", protocol="tcp")
    with pytest.raises(ValueError):
        ProbeSpec("x", "http://x/", "(", match="regex")


def test_cyclic_chain_detected():
    a = ProbeSpec("x", "http://x/a")
    b = ProbeSpec("x", "http://x/b", fallback=a)
    # frozen dataclasses cannot normally form a cycle; force one
    object.__setattr__(a, "fallback", b)
    with pytest.raises(ValueError, match="cyclic"):
        b.chain()


@pytest.mark.parametrize("endpoint", ["/health", "app:8080/health", "ftp://app/health"])
def test_http_endpoint_must_be_absolute(endpoint):
    with pytest.raises(ValueError, match="absolute"):
        ProbeSpec("app", endpoint, "UP")
    with pytest.raises(ValueError, match="absolute"):
        AuxCheck("node-exporter", "metrics", endpoint, "node_cpu_seconds_total")
