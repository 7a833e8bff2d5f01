"""Remote model calls: HTTP transport and the retry/backoff wrapper.

post_json() performs exactly one POST and classifies failures;
call_with_retry() re-runs a zero-argument call on transient failures with
exponential backoff. Neither knows anything about message formats.
"""

import http.client
import json
import socket
import time
import urllib.error
import urllib.request
from typing import Any, Callable, Dict, Optional, TypeVar

from pilotcode.middleware import logging_hook
from pilotcode.protocol import ProtocolError

T = TypeVar("T")

DEFAULT_MAX_RETRIES = 10
DEFAULT_BASE_DELAY = 1.0
DEFAULT_REQUEST_TIMEOUT = 300


class ApiError(Exception):
    """Non-2xx HTTP response from the chat-completion service."""

    def __init__(self, status: int, message: str = "", body: str = ""):
        self.status = status
        self.body = body
        super().__init__(f"HTTP {status}: {message or body[:200]}")


class TransportError(Exception):
    """The request never produced an HTTP response (refused, unreachable, timed out)."""


def is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, TransportError):
        return True
    if isinstance(exc, ApiError):
        return 500 <= exc.status <= 599
    return False


def backoff_delay(attempt: int, base_delay: float = DEFAULT_BASE_DELAY) -> float:
    """Delay before retry number `attempt` (0-based)."""
    return base_delay * (2 ** attempt)


def call_with_retry(
    call: Callable[[], T],
    max_retries: int = DEFAULT_MAX_RETRIES,
    base_delay: float = DEFAULT_BASE_DELAY,
    sleep: Callable[[float], None] = time.sleep,
    on_retry: Optional[Callable[[int, float, BaseException], None]] = None,
) -> T:
    """Run call(), retrying retryable failures up to max_retries times.

    Terminal errors propagate after one attempt; on exhaustion the last
    retryable error is re-raised.
    """
    attempt = 0
    while True:
        try:
            return call()
        except (ApiError, TransportError) as exc:
            if not is_retryable(exc) or attempt >= max_retries:
                raise
            delay = backoff_delay(attempt, base_delay)
            logging_hook.log_event("api_retry", {
                "attempt": attempt + 1,
                "delay": delay,
                "error_type": type(exc).__name__,
                "error": str(exc)[:300],
            })
            if on_retry is not None:
                on_retry(attempt, delay, exc)
            sleep(delay)
            attempt += 1


def post_json(
    url: str,
    payload: Dict[str, Any],
    headers: Optional[Dict[str, str]] = None,
    timeout: float = DEFAULT_REQUEST_TIMEOUT,
) -> Dict[str, Any]:
    data = json.dumps(payload).encode("utf-8")
    req = urllib.request.Request(
        url,
        data=data,
        headers=headers or {"Content-Type": "application/json"},
        method="POST",
    )
    logging_hook.log_event("api_request", {"url": url, "bytes": len(data)})

    try:
        resp = urllib.request.urlopen(req, timeout=timeout)
        raw = resp.read()
    except urllib.error.HTTPError as exc:
        body = exc.read().decode("utf-8", "replace") if exc.fp is not None else ""
        logging_hook.log_event("api_error", {"status": exc.code, "body_preview": body[:200]})
        raise ApiError(exc.code, str(exc.reason or ""), body) from exc
    except (urllib.error.URLError, socket.timeout, OSError, http.client.HTTPException) as exc:
        logging_hook.log_event("api_error", {"error": str(exc)})
        raise TransportError(f"request failed: {exc}") from exc

    try:
        result = json.loads(raw)
    except json.JSONDecodeError as exc:
        preview = raw[:200].decode("utf-8", "replace") if isinstance(raw, (bytes, bytearray)) else str(raw)[:200]
        logging_hook.log_event("api_error", {"error": str(exc), "raw_preview": preview})
        raise ProtocolError(f"invalid JSON response: {exc}") from exc
    if not isinstance(result, dict):
        raise ProtocolError("invalid response: expected a JSON object")
    return result


def make_transport(timeout: float = DEFAULT_REQUEST_TIMEOUT) -> Callable[[str, Dict[str, Any], Dict[str, str]], Dict[str, Any]]:
    """Bind a request timeout; the agent loop calls transport(url, payload, headers)."""

    def transport(url: str, payload: Dict[str, Any], headers: Dict[str, str]) -> Dict[str, Any]:
        return post_json(url, payload, headers, timeout=timeout)

    return transport
