import threading
import time

import pytest
import requests

from errors import TransportFailure
from fetcher import FetchExecutor, HttpFetcher
from frontier import Frontier
from models import EntryKind, SessionCookie, SessionIdentity
from proxy_manager import ProxyManager, ProxyManagerSettings
from run_metrics import RunMetrics
from run_state import RunContext, SessionSlot

IDENTITY = SessionIdentity(
    cookies=(SessionCookie("JSESSIONID", "abc", ".infojobs.net"), SessionCookie("cf_clearance", "xyz", ".infojobs.net")),
    user_agent="Mozilla/5.0 Test",
)


class FakeResponse:
    def __init__(self, status_code=200, text="<html></html>"):
        self.status_code = status_code
        self.text = text
        self.encoding = "utf-8"
        self.apparent_encoding = "utf-8"


@pytest.fixture
def fetcher():
    http = HttpFetcher(timeout=5, pool_size=2, referer="https://www.infojobs.net/")
    yield http
    http.close()


def test_fetch_sends_identity_headers_and_cookies(fetcher, monkeypatch):
    captured = {}

    def fake_get(url, **kwargs):
        captured.update(kwargs, url=url)
        return FakeResponse(200, "<html>ok</html>")

    monkeypatch.setattr(fetcher.session, "get", fake_get)
    status, body = fetcher.fetch("https://www.infojobs.net/x", IDENTITY)

    assert (status, body) == (200, "<html>ok</html>")
    assert captured["headers"]["User-Agent"] == "Mozilla/5.0 Test"
    assert captured["headers"]["Referer"] == "https://www.infojobs.net/"
    assert captured["headers"]["Accept-Language"].startswith("es-ES")
    assert {c.name: c.value for c in captured["cookies"]} == {"JSESSIONID": "abc", "cf_clearance": "xyz"}
    assert captured["timeout"] == 5
    assert captured["proxies"] is None


@pytest.mark.parametrize("status", [429, 500, 503])
def test_retryable_statuses_raise_transport_failure(fetcher, monkeypatch, status):
    monkeypatch.setattr(fetcher.session, "get", lambda url, **kw: FakeResponse(status))
    with pytest.raises(TransportFailure) as excinfo:
        fetcher.fetch("https://www.infojobs.net/x", IDENTITY)
    assert excinfo.value.status == status


def test_network_error_raises_transport_failure(fetcher, monkeypatch):
    def boom(url, **kwargs):
        raise requests.ConnectTimeout("timed out")

    monkeypatch.setattr(fetcher.session, "get", boom)
    with pytest.raises(TransportFailure, match="ConnectTimeout"):
        fetcher.fetch("https://www.infojobs.net/x", IDENTITY)


@pytest.mark.parametrize("status", [403, 404])
def test_client_errors_are_returned(fetcher, monkeypatch, status):
    monkeypatch.setattr(fetcher.session, "get", lambda url, **kw: FakeResponse(status, "nope"))
    assert fetcher.fetch("https://www.infojobs.net/x", IDENTITY) == (status, "nope")


def test_response_cookies_are_not_kept(fetcher):
    assert fetcher.session.cookies._policy.is_not_allowed("www.infojobs.net")


def test_proxy_manager_supplies_requests_proxies(monkeypatch):
    proxy = ProxyManager(ProxyManagerSettings(enabled=True, server="http://proxy.local:8080"))
    http = HttpFetcher(proxy_manager=proxy)
    captured = {}

    def fake_get(url, **kwargs):
        captured.update(kwargs)
        return FakeResponse()

    monkeypatch.setattr(http.session, "get", fake_get)
    http.fetch("https://www.infojobs.net/x", IDENTITY)
    assert captured["proxies"] == {"http": "http://proxy.local:8080", "https": "http://proxy.local:8080"}


class CountingFetcher:
    def __init__(self, responses):
        self.responses = list(responses)
        self.calls = 0

    def fetch(self, url, identity):
        self.calls += 1
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def _ctx():
    return RunContext(target=5, max_pages=1, metrics=RunMetrics(source="test"),
                      session=SessionSlot(IDENTITY))


def _entry(url="https://www.infojobs.net/madrid/a/of-ia"):
    frontier = Frontier(max_pages=1)
    frontier.offer_detail(url)
    return frontier.next()


def test_fetch_entry_retries_then_succeeds():
    ctx = _ctx()
    http = CountingFetcher([TransportFailure("HTTP 503", status=503), (200, "<html>ok</html>")])
    executor = FetchExecutor(ctx, http, concurrency=1, delay_range=(0, 0), max_retries=2, backoff_base=0)

    result = executor.fetch_entry(_entry())

    assert result.status == 200
    assert result.session_generation == 1
    assert http.calls == 2
    assert ctx.metrics.get("transport_failures") == 1


def test_fetch_entry_gives_up_after_max_retries():
    ctx = _ctx()
    failures = [TransportFailure("reset") for _ in range(3)]
    executor = FetchExecutor(ctx, CountingFetcher(failures), concurrency=1, delay_range=(0, 0),
                             max_retries=2, backoff_base=0)

    assert executor.fetch_entry(_entry()) is None
    assert ctx.metrics.get("transport_failures") == 3
    assert ctx.metrics.get("failed_urls") == 1


def test_forbidden_is_passed_to_handler_for_classification():
    ctx = _ctx()
    executor = FetchExecutor(ctx, CountingFetcher([(403, "denied")]), concurrency=1,
                             delay_range=(0, 0), max_retries=0, backoff_base=0)
    result = executor.fetch_entry(_entry())
    assert result.status == 403


def test_run_dispatches_everything_and_stops_when_idle():
    ctx = _ctx()
    frontier = Frontier(max_pages=1)
    urls = [f"https://www.infojobs.net/madrid/job{i}/of-i{i}" for i in range(6)]
    for url in urls:
        frontier.offer_detail(url)
    http = CountingFetcher([(200, "<html></html>")] * len(urls))
    handled = []
    executor = FetchExecutor(ctx, http, concurrency=3, delay_range=(0, 0), max_retries=0, backoff_base=0)

    executor.run(frontier, lambda entry, result: handled.append(entry.url), should_stop=lambda: False)

    assert sorted(handled) == sorted(urls)
    assert frontier.is_idle()


def test_handler_errors_do_not_stop_the_run():
    ctx = _ctx()
    frontier = Frontier(max_pages=1)
    frontier.offer_detail("https://www.infojobs.net/madrid/a/of-ia")
    frontier.offer_detail("https://www.infojobs.net/madrid/b/of-ib")
    seen = []

    def handler(entry, result):
        seen.append(entry.kind)
        raise RuntimeError("handler bug")

    executor = FetchExecutor(ctx, CountingFetcher([(200, "x"), (200, "y")]), concurrency=1,
                             delay_range=(0, 0), max_retries=0, backoff_base=0)
    executor.run(frontier, handler, should_stop=lambda: False)

    assert seen == [EntryKind.DETAIL, EntryKind.DETAIL]
    assert frontier.in_flight() == 0


def test_stop_lets_in_flight_requests_finish():
    ctx = _ctx()
    frontier = Frontier(max_pages=1)
    for i in range(4):
        frontier.offer_detail(f"https://www.infojobs.net/madrid/job{i}/of-i{i}")
    http = CountingFetcher([(200, "<html></html>")] * 4)
    stop = threading.Event()
    started, finished = [], []

    def slow_handler(entry, result):
        started.append(entry.url)
        stop.set()
        time.sleep(0.2)
        finished.append(entry.url)

    executor = FetchExecutor(ctx, http, concurrency=2, delay_range=(0, 0), max_retries=0, backoff_base=0)
    executor.run(frontier, slow_handler, should_stop=stop.is_set)

    assert 1 <= len(finished) <= 2
    assert sorted(finished) == sorted(started)
    assert http.calls == len(finished)
    assert frontier.next() is not None
