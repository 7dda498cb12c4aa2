"""Shared test fixtures."""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

import pytest

import provider


@pytest.fixture(autouse=True)
def reset_default_provider():
    """Drop the process-wide provider (and its cache) so tests never share fetched payloads."""
    provider._default_provider = None
    yield
    provider._default_provider = None


class StubProvider:
    """Stands in for NavProvider: returns canned payloads per scheme code and counts fetches."""

    def __init__(self, payloads: dict | None = None, error: Exception | None = None):
        self.payloads = payloads or {}
        self.error = error
        self.calls: list[str] = []

    def fetch_scheme(self, code: str) -> dict:
        self.calls.append(code)
        if self.error is not None:
            raise self.error
        return self.payloads.get(code, {"meta": {}, "data": []})


def make_payload(pairs, code: str = "100", name: str = "Test Fund - Growth") -> dict:
    """Provider-shaped payload (newest first) from ascending (YYYY-MM-DD, nav) pairs."""
    data = []
    for iso, nav in reversed(list(pairs)):
        year, month, day = iso.split("-")
        data.append({"date": f"{day}-{month}-{year}", "nav": str(nav)})
    return {
        "meta": {
            "fund_house": "Test AMC",
            "scheme_type": "Open Ended Schemes",
            "scheme_category": "Equity Scheme - Large Cap Fund",
            "scheme_code": int(code),
            "scheme_name": name,
            "isin_growth": "INF000000001",
            "isin_div_reinvestment": None,
        },
        "data": data,
        "status": "SUCCESS",
    }


@pytest.fixture
def stub_provider_factory():
    return StubProvider
