"""
Tests for HTTP response decoding.

Tests cover:
- Status classification
- gzip and identity bodies
- Size cap on raw and decompressed bodies
- Broken streams and malformed payloads
"""

import gzip
from unittest.mock import MagicMock

import pytest
import urllib3

from src.polygon_retrieval.decoder import ResponseDecoder, classify_status
from src.polygon_retrieval.exceptions import (
    ConnectionError,
    DecodeError,
    EmptyResultError,
    ErrorKind,
    HTTPStatusError,
    RateLimitError,
    ResponseTooLargeError,
    TransientError,
)

PAYLOAD = {"status": "OK", "results": [{"t": 1, "q": 2}, {"t": 3, "q": 4}]}


class TestClassifyStatus:
    """HTTP status to error mapping."""

    def test_ok(self):
        assert classify_status(200) is None

    def test_not_found_is_empty_result(self):
        error = classify_status(404, "https://x")
        assert isinstance(error, EmptyResultError)
        assert error.kind is ErrorKind.EMPTY_RESULT
        assert not error.retryable

    def test_too_many_requests_is_transient(self):
        error = classify_status(429)
        assert isinstance(error, RateLimitError)
        assert error.retryable

    @pytest.mark.parametrize("status", [500, 502, 503, 504, 599])
    def test_server_errors_are_transient(self, status):
        assert isinstance(classify_status(status), TransientError)

    @pytest.mark.parametrize("status", [201, 301, 400, 401, 403, 418])
    def test_other_statuses_are_permanent(self, status):
        error = classify_status(status, "https://x")
        assert isinstance(error, HTTPStatusError)
        assert error.status == status
        assert error.kind is ErrorKind.PERMANENT


class TestResponseDecoder:
    """Body decoding."""

    def test_identity_body(self, make_response):
        assert ResponseDecoder().decode(make_response(payload=PAYLOAD)) == PAYLOAD

    def test_gzip_body(self, make_response):
        assert ResponseDecoder().decode(make_response(payload=PAYLOAD, gzipped=True)) == PAYLOAD

    def test_gzip_body_with_cap(self, make_response):
        decoder = ResponseDecoder(max_body_bytes=10_000)
        assert decoder.decode(make_response(payload=PAYLOAD, gzipped=True)) == PAYLOAD

    def test_multi_member_gzip_with_cap(self, make_response):
        body = gzip.compress(b'{"a": ') + gzip.compress(b'[1, 2]}')
        response = make_response(body=body, headers={"Content-Encoding": "gzip"})
        assert ResponseDecoder(max_body_bytes=1000).decode(response) == {"a": [1, 2]}

    def test_identity_body_with_cap(self, make_response):
        assert ResponseDecoder(max_body_bytes=10_000).decode(make_response(payload=PAYLOAD)) == PAYLOAD

    def test_status_checked_before_body(self, make_response):
        with pytest.raises(EmptyResultError):
            ResponseDecoder().decode(make_response(status=404, body=b"not json"))
        with pytest.raises(RateLimitError):
            ResponseDecoder().decode(make_response(status=429, body=b"slow down"))

    def test_malformed_json(self, make_response):
        with pytest.raises(DecodeError):
            ResponseDecoder().decode(make_response(body=b'{"results": [1, 2'))

    def test_corrupt_gzip(self, make_response):
        response = make_response(body=b"\x1f\x8b not gzip", headers={"Content-Encoding": "gzip"})
        with pytest.raises(DecodeError):
            ResponseDecoder().decode(response)

    def test_corrupt_gzip_with_cap(self, make_response):
        response = make_response(body=b"\x1f\x8b not gzip", headers={"Content-Encoding": "gzip"})
        with pytest.raises(DecodeError):
            ResponseDecoder(max_body_bytes=1000).decode(response)

    def test_truncated_gzip_with_cap(self, make_response):
        body = gzip.compress(b'{"a": 1}')[:-6]
        response = make_response(body=body, headers={"Content-Encoding": "gzip"})
        with pytest.raises(DecodeError):
            ResponseDecoder(max_body_bytes=1000).decode(response)

    def test_unsupported_encoding(self, make_response):
        response = make_response(payload=PAYLOAD, headers={"Content-Encoding": "br"})
        with pytest.raises(DecodeError):
            ResponseDecoder().decode(response)

    def test_raw_body_over_cap(self, make_response):
        response = make_response(payload={"data": "x" * 500})
        with pytest.raises(ResponseTooLargeError):
            ResponseDecoder(max_body_bytes=100).decode(response)

    def test_decompressed_body_over_cap(self, make_response):
        # Highly compressible: small on the wire, large once inflated
        response = make_response(payload={"data": "a" * 100_000}, gzipped=True)
        assert len(gzip.compress(b"a" * 100_000)) < 1000
        with pytest.raises(ResponseTooLargeError):
            ResponseDecoder(max_body_bytes=1000).decode(response)

    def test_broken_stream_is_transient(self, make_response):
        response = make_response(payload=PAYLOAD, gzipped=True)
        response.raw = MagicMock()
        response.raw.read.side_effect = urllib3.exceptions.ProtocolError("connection reset")

        with pytest.raises(ConnectionError) as exc_info:
            ResponseDecoder().decode(response)
        assert exc_info.value.retryable

    def test_response_closed_on_error(self, make_response):
        response = make_response(status=500)
        response.close = MagicMock()
        with pytest.raises(TransientError):
            ResponseDecoder().decode(response)
        response.close.assert_called_once()

    def test_invalid_cap(self):
        with pytest.raises(ValueError):
            ResponseDecoder(max_body_bytes=0)
