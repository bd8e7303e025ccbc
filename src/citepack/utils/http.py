"""HTTP access to the local inference service.

Only loopback endpoints are allowed. Every request is time-boxed and can be
aborted mid-flight through a :class:`CancelToken`.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Optional, TypeVar
from urllib.parse import urlsplit

import httpx

from citepack.errors import (
    Cancelled,
    InferenceHttpError,
    InvalidBaseUrl,
    ModelNotFound,
    NonLocalEndpointRejected,
    RequestTimeout,
    ServiceUnreachable,
)
from citepack.utils.cancel import CancelToken

logger = logging.getLogger(__name__)

ALLOWED_HOSTS = frozenset({"localhost", "127.0.0.1"})

T = TypeVar("T")


def assert_local_base_url(base_url: str) -> str:
    """Validate an inference base URL and return its ``scheme://host[:port]``.

    Raises:
        InvalidBaseUrl: empty or unparsable URL
        NonLocalEndpointRejected: host is not localhost/127.0.0.1
    """
    raw = (base_url or "").strip()
    if not raw:
        raise InvalidBaseUrl("Inference base URL is empty.")
    try:
        parts = urlsplit(raw)
        hostname = parts.hostname
        parts.port  # raises ValueError on a malformed port
    except ValueError as e:
        raise InvalidBaseUrl(f"Inference base URL is invalid: {raw}") from e
    if parts.scheme not in ("http", "https") or not hostname:
        raise InvalidBaseUrl(f"Inference base URL is invalid: {raw}")
    if hostname not in ALLOWED_HOSTS:
        raise NonLocalEndpointRejected(
            "Only local inference endpoints are allowed (localhost/127.0.0.1)."
        )
    return f"{parts.scheme}://{parts.netloc}"


def is_model_not_found(detail: str) -> bool:
    lower = (detail or "").lower()
    return "model" in lower and "not found" in lower


def _decode_body(response: httpx.Response) -> dict:
    text = response.text
    if not text:
        return {}
    try:
        body = json.loads(text)
    except ValueError:
        return {"raw": text}
    return body if isinstance(body, dict) else {"raw": body}


def _error_detail(body: dict, status_code: int) -> str:
    for key in ("error", "message", "raw"):
        value = body.get(key)
        if value:
            return str(value)
    return f"HTTP {status_code}"


class LocalHttpClient:
    """Small JSON-over-HTTP client for the local inference service.

    Callers stay synchronous. Each call runs an ``httpx.AsyncClient``
    request as a task on a private event loop in the calling thread, and
    cancelling the token cancels that task, which interrupts a read that
    is blocked waiting for the service.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = assert_local_base_url(base_url)
        self.timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        timeout = httpx.Timeout(self.timeout) if self.timeout and self.timeout > 0 else httpx.Timeout(None)
        return httpx.AsyncClient(base_url=self.base_url, timeout=timeout, transport=self._transport)

    def _run(self, call: Callable[[], Awaitable[T]], token: Optional[CancelToken], label: str) -> T:
        if token is not None:
            token.raise_if_cancelled()

        async def cancellable() -> T:
            task = asyncio.ensure_future(call())
            loop = asyncio.get_running_loop()
            unregister = (
                token.on_cancel(lambda: loop.call_soon_threadsafe(task.cancel)) if token is not None else None
            )
            try:
                return await task
            except asyncio.CancelledError as e:
                raise Cancelled("Request cancelled.") from e
            finally:
                if unregister is not None:
                    unregister()

        try:
            return asyncio.run(cancellable())
        except httpx.HTTPError as e:
            logger.warning(f"{label} failed: {e}")
            raise self._translate(e, token) from e

    def _translate(self, error: Exception, token: Optional[CancelToken]) -> Exception:
        if token is not None and token.cancelled:
            return Cancelled("Request cancelled.")
        if isinstance(error, httpx.TimeoutException):
            return RequestTimeout("Inference request timed out. Verify the local model and try again.")
        return ServiceUnreachable(
            f"Could not reach the inference service at {self.base_url}. Start it and try again."
        )

    def _raise_for_status(self, response: httpx.Response, body: dict) -> None:
        if response.is_success:
            return
        detail = _error_detail(body, response.status_code)
        if is_model_not_found(detail):
            raise ModelNotFound(detail)
        raise InferenceHttpError(f"Inference request failed: {detail}")

    def request_json(
        self,
        method: str,
        path: str,
        body: Optional[dict] = None,
        token: Optional[CancelToken] = None,
    ) -> dict:
        """Send one request and return the decoded JSON object."""

        async def send() -> httpx.Response:
            async with self._client() as client:
                return await client.request(method, path, json=body)

        response = self._run(send, token, f"{method} {path}")
        if token is not None:
            token.raise_if_cancelled()
        decoded = _decode_body(response)
        self._raise_for_status(response, decoded)
        return decoded

    def stream_json_lines(
        self,
        path: str,
        body: dict,
        on_object: Callable[[dict[str, Any]], bool],
        token: Optional[CancelToken] = None,
    ) -> None:
        """POST and pass each newline-delimited JSON object of the reply to ``on_object``.

        Reading stops when ``on_object`` returns True. Lines that are not
        valid JSON objects are skipped.
        """

        async def receive() -> None:
            async with self._client() as client:
                async with client.stream("POST", path, json=body) as response:
                    if not response.is_success:
                        await response.aread()
                        self._raise_for_status(response, _decode_body(response))
                    async for line in response.aiter_lines():
                        if token is not None:
                            token.raise_if_cancelled()
                        line = line.strip()
                        if not line:
                            continue
                        try:
                            obj = json.loads(line)
                        except ValueError:
                            continue
                        if isinstance(obj, dict) and on_object(obj):
                            return

        self._run(receive, token, f"POST {path} stream")
