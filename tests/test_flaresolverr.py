import requests

from flaresolverr import FlareSolverr


class FakeResponse:
    def __init__(self, status_code=200, payload=None, text=""):
        self.status_code = status_code
        self._payload = payload
        self.text = text

    def json(self):
        if self._payload is None:
            raise ValueError("no json")
        return self._payload


class FakeSession:
    def __init__(self, responses):
        self.responses = list(responses)
        self.requests = []

    def request(self, method, url, json=None, timeout=None):
        self.requests.append((method, url, json))
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def test_solve_returns_cookies_and_user_agent():
    session = FakeSession([
        FakeResponse(payload={"status": "ok"}),
        FakeResponse(payload={
            "status": "ok",
            "solution": {
                "url": "https://www.infojobs.net/",
                "cookies": [{"name": "cf_clearance", "value": "x"}],
                "userAgent": "Solver/1",
                "response": "<html></html>",
            },
        }),
    ])
    client = FlareSolverr("http://solver:8191/", timeout=30, session=session)

    result = client.solve("https://www.infojobs.net/", proxy_url="http://u:p@proxy:1")

    assert result.success
    assert result.cookies == [{"name": "cf_clearance", "value": "x"}]
    assert result.user_agent == "Solver/1"
    method, url, payload = session.requests[1]
    assert (method, url) == ("POST", "http://solver:8191/v1")
    assert payload["maxTimeout"] == 30000
    assert payload["proxy"] == {"url": "http://u:p@proxy:1"}


def test_unavailable_service_is_reported_not_raised():
    session = FakeSession([requests.ConnectionError("refused")])
    result = FlareSolverr(session=session).solve("https://www.infojobs.net/")
    assert not result.success
    assert "not available" in result.error


def test_error_status_from_service():
    session = FakeSession([
        FakeResponse(payload={"status": "ok"}),
        FakeResponse(payload={"status": "error", "message": "Challenge not solved"}),
    ])
    result = FlareSolverr(session=session).solve("https://www.infojobs.net/")
    assert not result.success
    assert result.error == "Challenge not solved"


def test_non_json_response_is_an_error():
    session = FakeSession([
        FakeResponse(payload={"status": "ok"}),
        FakeResponse(status_code=200, payload=None, text="<html>gateway</html>"),
    ])
    result = FlareSolverr(session=session).solve("https://www.infojobs.net/")
    assert not result.success
    assert "Non-JSON" in result.error


def test_failed_health_check_is_retried_on_next_solve():
    session = FakeSession([
        requests.ConnectionError("refused"),
        FakeResponse(payload={"status": "ok"}),
        FakeResponse(payload={"status": "ok", "solution": {"userAgent": "Solver/1", "cookies": []}}),
    ])
    client = FlareSolverr(session=session)

    assert not client.solve("https://www.infojobs.net/").success
    result = client.solve("https://www.infojobs.net/")

    assert result.success
    assert result.user_agent == "Solver/1"
    assert [method for method, _, _ in session.requests] == ["GET", "GET", "POST"]
