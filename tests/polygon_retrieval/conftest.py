"""Shared fixtures for the Polygon retrieval tests."""

import gzip
import io
import json

import pytest
import requests
import urllib3
from requests.structures import CaseInsensitiveDict

from src.polygon_retrieval.config import ClientSettings
from src.polygon_retrieval.retry import RetryPolicy


def build_response(status=200, payload=None, body=None, gzipped=False, headers=None):
    """Build a streamed requests.Response backed by an in-memory urllib3 response."""
    if body is None:
        body = b"" if payload is None else json.dumps(payload).encode()
    headers = dict(headers or {})
    if gzipped:
        body = gzip.compress(body)
        headers["Content-Encoding"] = "gzip"

    raw = urllib3.HTTPResponse(
        body=io.BytesIO(body),
        headers=headers,
        status=status,
        preload_content=False,
    )
    response = requests.Response()
    response.status_code = status
    response.headers = CaseInsensitiveDict(headers)
    response.raw = raw
    response.url = "https://api.polygon.io/test"
    return response


@pytest.fixture
def make_response():
    """Factory fixture for streamed responses."""
    return build_response


@pytest.fixture
def settings(tmp_path):
    """Settings pointing diagnostic dumps at a temporary directory."""
    return ClientSettings(
        api_key="pk_test_key_123",
        rate_limit_per_second=1000.0,
        log_dir=str(tmp_path / "logs"),
    )


@pytest.fixture
def fast_policy():
    """Retry policy without jitter and with a short budget."""
    return RetryPolicy(
        initial_interval=0.01,
        multiplier=2.0,
        max_interval=0.05,
        max_elapsed_time=1.0,
        randomization_factor=0.0,
    )
