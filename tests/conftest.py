from __future__ import annotations

import json
from typing import Any, Callable, Dict, List, Optional, Union

import pytest
import requests
from requests.adapters import BaseAdapter


def _make_response(
    status_code: int,
    payload: Any = None,
    headers: Optional[Dict[str, str]] = None,
) -> requests.Response:
    r = requests.Response()
    r.status_code = status_code
    r.url = "https://tenant.example.test/api/v2/"
    if payload is None:
        r._content = b""  # type: ignore[attr-defined]
    else:
        r._content = json.dumps(payload).encode("utf-8")  # type: ignore[attr-defined]
        r.headers["Content-Type"] = "application/json"
    for name, value in (headers or {}).items():
        r.headers[name] = value
    return r


Outcome = Union[requests.Response, BaseException, Callable[[requests.PreparedRequest], Any]]


class FakeAdapter(BaseAdapter):
    """Base transport replaying scripted outcomes; the last one repeats forever"""

    def __init__(self, *outcomes: Outcome):
        super().__init__()
        self.outcomes: List[Outcome] = list(outcomes)
        self.requests: List[requests.PreparedRequest] = []
        self.bodies: List[Any] = []
        self.kwargs: List[Dict[str, Any]] = []
        self.closed = False

    @property
    def calls(self) -> int:
        return len(self.requests)

    def send(self, request, **kwargs):
        self.requests.append(request)
        self.bodies.append(request.body)
        self.kwargs.append(kwargs)
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if callable(outcome) and not isinstance(outcome, requests.Response):
            outcome = outcome(request)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    def close(self):
        self.closed = True


@pytest.fixture
def make_response():
    return _make_response


@pytest.fixture
def fake_adapter():
    return FakeAdapter


@pytest.fixture
def sleeps():
    """Recorded backoff delays; pass ``sleeps.append`` as the adapter's sleep"""
    return []


@pytest.fixture
def prepared_get():
    return requests.Request("GET", "https://tenant.example.test/api/v2/clients").prepare()
