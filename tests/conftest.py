import json
from typing import List

import pytest
import requests

from app import create_app
from inference import InferenceClient
from settings import Settings


class FixedRandom:
    """Random source that always returns the same draw (0.5 means zero jitter)."""

    def __init__(self, value: float = 0.5):
        self.value = value

    def random(self) -> float:
        return self.value


def make_response(status: int = 200, body=b"", json_body=None) -> requests.Response:
    response = requests.Response()
    response.status_code = status
    if json_body is not None:
        body = json.dumps(json_body).encode("utf-8")
        response.headers["Content-Type"] = "application/json"
    response._content = body
    return response


class FakeSession:
    def __init__(self, *responses):
        self.responses: List = list(responses)
        self.calls: List[dict] = []

    def post(self, url, **kwargs):
        self.calls.append({"url": url, **kwargs})
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


CLIP_LABELS_TOP = [
    "a laboratory beaker",
    "a realistic beaker used in scientific research",
    "scientific equipment beaker",
    "something unrelated to laboratory equipment",
]


@pytest.fixture
def settings():
    return Settings(hf_api_key="hf_test")


@pytest.fixture
def fixed_rng():
    return FixedRandom()


@pytest.fixture
def make_client(settings):
    def _make(*responses):
        session = FakeSession(*responses)
        return InferenceClient(settings, session=session), session
    return _make


@pytest.fixture
def make_app(settings, fixed_rng):
    def _make(*responses, **overrides):
        for key, value in overrides.items():
            setattr(settings, key, value)
        session = FakeSession(*responses)
        app = create_app(settings, InferenceClient(settings, session=session), fixed_rng)
        app.config["TESTING"] = True
        return app.test_client(), session
    return _make
