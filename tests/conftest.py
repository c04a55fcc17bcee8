"""Pytest configuration and fixtures."""

import json
import os
from unittest.mock import patch

import pytest
from cryptography.fernet import Fernet

from funding_trader.core.config import Config
from funding_trader.exchanges.models import Credentials
from funding_trader.exchanges.transport import HttpResponse

# Well-known throwaway key from the eth-account documentation
TEST_PRIVATE_KEY = "0x4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318"
TEST_WALLET = "0x5ce9454909639d2d17a3f753ce7d93fa0b9ab12e"


class Sequence:
    """Responses consumed one per call (the last one repeats)."""

    def __init__(self, *responses):
        self.responses = list(responses)

    def next(self):
        return self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]


class FakeTransport:
    """
    Stand-in for RestTransport that routes by (method, path).

    A route value may be a payload (wrapped as HTTP 200), an HttpResponse,
    an exception instance to raise, a callable(query, body) returning either,
    or a Sequence of those consumed one per call (the last one repeats).
    Plain lists are ordinary JSON payloads.
    """

    def __init__(self, routes=None):
        self.routes = dict(routes or {})
        self.calls = []

    def add(self, method, path, response):
        self.routes[(method, path)] = response

    def calls_to(self, method, path):
        return [c for c in self.calls if c["method"] == method and c["path"] == path]

    def request(self, method, path, query="", body=None, headers=None):
        self.calls.append({"method": method, "path": path, "query": query, "body": body, "headers": headers or {}})
        key = (method, path)
        if key not in self.routes:
            raise AssertionError(f"unexpected request {method} {path}")
        response = self.routes[key]
        if isinstance(response, Sequence):
            response = response.next()
        if callable(response) and not isinstance(response, type):
            response = response(query, body)
        if isinstance(response, Exception):
            raise response
        if isinstance(response, HttpResponse):
            return response
        return HttpResponse(status=200, payload=response, text=json.dumps(response))

    def close(self):
        pass


def json_body(call):
    return json.loads(call["body"]) if call["body"] else {}


@pytest.fixture
def fake_transport():
    return FakeTransport()


@pytest.fixture
def hmac_credentials():
    return Credentials(api_key="test-key", api_secret="test-secret")


@pytest.fixture
def okx_credentials():
    return Credentials(api_key="test-key", api_secret="test-secret", passphrase="test-pass")


@pytest.fixture
def web3_credentials():
    return Credentials(api_key=TEST_WALLET, api_secret=TEST_PRIVATE_KEY, wallet_address=TEST_WALLET)


@pytest.fixture
def fernet_key():
    return Fernet.generate_key().decode("ascii")


@pytest.fixture
def clean_env():
    """Environment without FT_* overrides."""
    env = {k: v for k, v in os.environ.items() if not k.startswith("FT_")}
    with patch.dict(os.environ, env, clear=True):
        yield env


@pytest.fixture
def config(clean_env, fernet_key, tmp_path):
    cfg = Config()
    cfg.credentials.encryption_key = fernet_key
    cfg.monitoring.state_dir = str(tmp_path / "state")
    return cfg
