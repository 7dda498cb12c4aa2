"""Route tests for the JSON API server, run against a stubbed NAV provider."""

from __future__ import annotations

import json
import threading
import urllib.error
import urllib.request
from http.server import HTTPServer

import pytest

from conftest import StubProvider, make_payload
from errors import UpstreamError
from server import NavCalcHandler


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def serve():
    """Start a server on a free port with the given provider; yields a request helper."""
    servers = []

    def start(provider):
        handler = type("StubbedHandler", (NavCalcHandler,), {"provider": provider})
        server = HTTPServer(("127.0.0.1", 0), handler)
        thread = threading.Thread(target=server.serve_forever, daemon=True)
        thread.start()
        servers.append(server)
        base = f"http://127.0.0.1:{server.server_address[1]}"

        def request(path: str, body=None, raw: bytes | None = None, headers: dict | None = None) -> tuple[int, dict | str]:
            data = raw if raw is not None else (json.dumps(body).encode("utf-8") if body is not None else None)
            req = urllib.request.Request(base + path, data=data, method="POST" if data is not None else "GET")
            if data is not None:
                req.add_header("Content-Type", "application/json")
            for name, value in (headers or {}).items():
                req.add_header(name, value)
            try:
                with urllib.request.urlopen(req, timeout=10) as response:
                    status, text = response.status, response.read().decode("utf-8")
                    content_type = response.headers.get("Content-Type", "")
            except urllib.error.HTTPError as e:
                status, text = e.code, e.read().decode("utf-8")
                content_type = e.headers.get("Content-Type", "")
            if content_type.startswith("application/json"):
                return status, json.loads(text)
            return status, text

        return request

    yield start
    for server in servers:
        server.shutdown()
        server.server_close()


@pytest.fixture
def stub() -> StubProvider:
    pairs = [("2020-01-01", 10.0), ("2021-01-01", 11.0), ("2022-01-01", 12.1), ("2023-01-01", 13.31)]
    return StubProvider({"100": make_payload(pairs)})


# ============================================================================
# Tests: routes
# ============================================================================


class TestRoutes:
    def test_index_page(self, serve, stub):
        status, body = serve(stub)("/")
        assert status == 200
        assert "NAV Calculator" in body

    def test_scheme(self, serve, stub):
        status, body = serve(stub)("/api/scheme/100")
        assert status == 200
        assert body["total"] == 4
        assert body["data"][0] == {"date": "01-01-2023", "nav": 13.31}

    def test_point_return_get(self, serve, stub):
        status, body = serve(stub)("/api/scheme/100/returns?from=2020-01-01&to=2023-01-01")
        assert status == 200
        assert body["simpleReturn"] == 33.1

    def test_lumpsum_post(self, serve, stub):
        status, body = serve(stub)(
            "/api/scheme/100/lumpsum", {"investment": 10000, "from": "2020-01-01", "to": "2023-01-01"}
        )
        assert status == 200
        assert body["currentValue"] == 13310.0
        assert body["annualizedReturn"] == pytest.approx(10.0, abs=0.01)

    def test_validation_error_is_400(self, serve, stub):
        status, body = serve(stub)("/api/scheme/100/lumpsum", {"investment": -1, "from": "2020-01-01", "to": "2023-01-01"})
        assert status == 400
        assert "investment" in body["error"]
        assert stub.calls == []

    def test_range_error_is_400_with_bounds(self, serve, stub):
        status, body = serve(stub)("/api/scheme/100/lumpsum", {"investment": 1, "from": "2010-01-01", "to": "2023-01-01"})
        assert status == 400
        assert body["earliestNAVDate"] == "2020-01-01"

    def test_unknown_scheme_is_404(self, serve, stub):
        status, body = serve(stub)("/api/scheme/999/sip", {"amount": 1, "frequency": "monthly", "from": "2020-01-01", "to": "2020-06-01"})
        assert status == 404

    def test_invalid_json_is_400(self, serve, stub):
        status, body = serve(stub)("/api/scheme/100/sip", raw=b"{not json")
        assert status == 400
        assert "Invalid JSON" in body["error"]
        assert stub.calls == []

    def test_non_utf8_body_is_400(self, serve, stub):
        status, body = serve(stub)("/api/scheme/100/lumpsum", raw=b'{"investment": "\xff"}')
        assert status == 400
        assert "Invalid JSON" in body["error"]
        assert stub.calls == []

    def test_bad_content_length_is_400(self, serve, stub):
        status, body = serve(stub)("/api/scheme/100/lumpsum", raw=b"{}", headers={"Content-Length": "abc"})
        assert status == 400
        assert body["parameter"] == "Content-Length"
        assert stub.calls == []

    def test_upstream_timeout_is_504(self, serve):
        status, body = serve(StubProvider(error=UpstreamError(timeout=True)))("/api/scheme/100")
        assert status == 504

    def test_unexpected_error_is_500(self, serve):
        status, body = serve(StubProvider(error=RuntimeError("boom")))(
            "/api/scheme/100/lumpsum", {"investment": 1, "from": "2020-01-01", "to": "2021-01-01"}
        )
        assert status == 500
        assert body == {"error": "Internal Server Error"}

    def test_unknown_route_is_404(self, serve, stub):
        assert serve(stub)("/api/nothing")[0] == 404
        assert serve(stub)("/api/scheme/100/unknown", {})[0] == 404

    def test_every_calculator_route(self, serve, stub):
        request = serve(stub)
        bodies = {
            "sip": {"amount": 1000, "frequency": "yearly", "from": "2020-01-01", "to": "2023-01-01"},
            "step-up-sip": {"amount": 1000, "from": "2020-01-01", "to": "2020-06-01"},
            "swp": {"initialInvestment": 10000, "amount": 500, "frequency": "monthly", "from": "2020-01-01", "to": "2021-01-01"},
            "step-up-swp": {"initialCorpus": 10000, "initialWithdrawal": 100, "from": "2020-01-01", "to": "2022-01-01"},
            "returns": {"from": "2020-01-01", "to": "2023-01-01", "period": "yearly"},
            "rolling-returns": {"interval": "1year,3year,5year"},
            "rolling-returns-series": {"from": "2021-01-01", "to": "2022-12-31", "window": "1year", "stepDays": 90},
        }
        for kind, body in bodies.items():
            status, result = request(f"/api/scheme/100/{kind}", body)
            assert status == 200, (kind, result)
            assert result["schemeCode"] == "100"
