"""
HTTP response validation, gzip decompression and JSON decoding.

The decoder works on streamed requests responses (stream=True) and reads
the undecoded body from response.raw so that decompression is explicit:
a gzip body is buffered in full and decompressed here, anything else is
parsed as JSON straight from the stream.

Status handling:
- 200: decode the body
- 404: EmptyResultError (the vendor has no data for the query)
- 429 and 5xx: TransientError, retried by the caller
- anything else: HTTPStatusError (permanent)
"""

import gzip
import json
import logging
import zlib
from typing import Any, Optional

import requests
import urllib3

from .exceptions import (
    ConnectionError,
    DecodeError,
    EmptyResultError,
    HTTPStatusError,
    RateLimitError,
    RetrievalError,
    ResponseTooLargeError,
    TransientError,
)

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024
_GZIP_WBITS = zlib.MAX_WBITS | 16


def classify_status(status: int, url: Optional[str] = None) -> Optional[RetrievalError]:
    """
    Map an HTTP status to the error it represents.

    Returns:
        None for 200, otherwise the error to raise.
    """
    if status == 200:
        return None
    if status == 404:
        return EmptyResultError("no data for query", status=status, url=url)
    if status == 429:
        return RateLimitError("rate limit exceeded", status=status, url=url)
    if 500 <= status < 600:
        return TransientError(f"server returned {status}", status=status, url=url)
    return HTTPStatusError(status, url)


class ResponseDecoder:
    """
    Turns a streamed HTTP response into a decoded JSON value.

    Attributes:
        max_body_bytes: Optional ceiling on both the raw body size and the
            decompressed size. None means unlimited. Exceeding it raises
            ResponseTooLargeError; bodies are never truncated.
    """

    def __init__(self, max_body_bytes: Optional[int] = None):
        if max_body_bytes is not None and max_body_bytes <= 0:
            raise ValueError("max_body_bytes must be positive or None")
        self.max_body_bytes = max_body_bytes

    def decode(self, response: requests.Response, url: Optional[str] = None) -> Any:
        """
        Validate status and decode the body of response.

        Args:
            response: Response obtained with stream=True.
            url: URL to report in errors (already masked by the caller).

        Raises:
            EmptyResultError: On HTTP 404.
            TransientError: On 429/5xx or when the stream breaks mid-body.
            HTTPStatusError: On any other non-200 status.
            DecodeError: On corrupt gzip or malformed JSON.
            ResponseTooLargeError: When the body exceeds max_body_bytes.
        """
        try:
            error = classify_status(response.status_code, url)
            if error is not None:
                raise error

            encoding = response.headers.get("content-encoding", "").strip().lower()
            if encoding == "gzip":
                body = self._gunzip(self._read_raw(response))
                return self._parse(body)
            if encoding not in ("", "identity"):
                raise DecodeError(f"unsupported content-encoding {encoding!r}", url=url)

            if self.max_body_bytes is None:
                return self._parse_stream(response)
            return self._parse(self._read_raw(response))
        finally:
            response.close()

    def _read_raw(self, response: requests.Response) -> bytes:
        limit = self.max_body_bytes
        buf = bytearray()
        try:
            while True:
                chunk = response.raw.read(CHUNK_SIZE, decode_content=False)
                if not chunk:
                    break
                buf += chunk
                if limit is not None and len(buf) > limit:
                    raise ResponseTooLargeError(
                        "response body exceeds configured cap",
                        max_body_bytes=limit,
                    )
        except (urllib3.exceptions.HTTPError, OSError) as e:
            raise ConnectionError("stream broke while reading body", cause=e) from e
        return bytes(buf)

    def _gunzip(self, body: bytes) -> bytes:
        limit = self.max_body_bytes
        if limit is None:
            try:
                return gzip.decompress(body)
            except (OSError, EOFError, zlib.error) as e:
                raise DecodeError("could not decompress gzip body", cause=e) from e

        out = bytearray()
        data = body
        # Loop over members; gzip allows several concatenated streams
        while data:
            decompressor = zlib.decompressobj(_GZIP_WBITS)
            try:
                out += decompressor.decompress(data, limit - len(out) + 1)
            except zlib.error as e:
                raise DecodeError("could not decompress gzip body", cause=e) from e
            if len(out) > limit:
                raise ResponseTooLargeError(
                    "decompressed body exceeds configured cap",
                    max_body_bytes=limit,
                )
            if not decompressor.eof:
                raise DecodeError("gzip stream ended early")
            data = decompressor.unused_data
        return bytes(out)

    def _parse_stream(self, response: requests.Response) -> Any:
        try:
            return json.load(response.raw)
        except ValueError as e:
            raise DecodeError("malformed JSON body", cause=e) from e
        except (urllib3.exceptions.HTTPError, OSError) as e:
            raise ConnectionError("stream broke while reading body", cause=e) from e

    @staticmethod
    def _parse(body: bytes) -> Any:
        try:
            return json.loads(body)
        except ValueError as e:
            raise DecodeError("malformed JSON body", cause=e) from e
