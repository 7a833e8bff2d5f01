"""Tests for the retry wrapper and the urllib transport."""

import http.client
import io
import json
import unittest
import urllib.error
from unittest.mock import MagicMock, patch

from pilotcode import model_calls
from pilotcode.model_calls import ApiError, TransportError, call_with_retry, is_retryable, post_json
from pilotcode.protocol import ProtocolError


class FlakyCall:
    """Raises the queued errors in order, then returns the value."""

    def __init__(self, errors, value="ok"):
        self.errors = list(errors)
        self.value = value
        self.attempts = 0

    def __call__(self):
        self.attempts += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.value


class TestCallWithRetry(unittest.TestCase):

    def setUp(self):
        self.delays = []

    def test_success_first_try(self):
        call = FlakyCall([])
        self.assertEqual(call_with_retry(call, sleep=self.delays.append), "ok")
        self.assertEqual(call.attempts, 1)
        self.assertEqual(self.delays, [])

    def test_recovers_after_transient_errors(self):
        call = FlakyCall([ApiError(503), TransportError("refused")])
        self.assertEqual(call_with_retry(call, sleep=self.delays.append), "ok")
        self.assertEqual(call.attempts, 3)
        self.assertEqual(self.delays, [1.0, 2.0])

    def test_exhaustion_reraises_last_error(self):
        errors = [ApiError(500 + i) for i in range(5)]
        call = FlakyCall(errors)
        with self.assertRaises(ApiError) as cm:
            call_with_retry(call, max_retries=3, base_delay=0.5, sleep=self.delays.append)
        self.assertEqual(call.attempts, 4)
        self.assertEqual(cm.exception.status, 503)
        self.assertEqual(self.delays, [0.5, 1.0, 2.0])

    def test_default_budget_is_eleven_attempts(self):
        call = FlakyCall([TransportError("down")] * 20)
        with self.assertRaises(TransportError):
            call_with_retry(call, sleep=self.delays.append)
        self.assertEqual(call.attempts, 11)
        self.assertEqual(self.delays, [2.0 ** k for k in range(10)])

    def test_client_error_is_terminal(self):
        call = FlakyCall([ApiError(401)])
        with self.assertRaises(ApiError):
            call_with_retry(call, sleep=self.delays.append)
        self.assertEqual(call.attempts, 1)
        self.assertEqual(self.delays, [])

    def test_protocol_error_is_terminal(self):
        call = FlakyCall([ProtocolError("garbage")])
        with self.assertRaises(ProtocolError):
            call_with_retry(call, sleep=self.delays.append)
        self.assertEqual(call.attempts, 1)

    def test_on_retry_callback(self):
        seen = []
        call = FlakyCall([ApiError(502)])
        call_with_retry(call, sleep=self.delays.append, on_retry=lambda a, d, e: seen.append((a, d, type(e))))
        self.assertEqual(seen, [(0, 1.0, ApiError)])

    def test_is_retryable(self):
        self.assertTrue(is_retryable(ApiError(599)))
        self.assertFalse(is_retryable(ApiError(600)))
        self.assertFalse(is_retryable(ApiError(429)))
        self.assertTrue(is_retryable(TransportError("x")))
        self.assertFalse(is_retryable(ValueError("x")))


class TestPostJson(unittest.TestCase):

    def _response(self, body: bytes):
        resp = MagicMock()
        resp.read.return_value = body
        return resp

    def test_returns_decoded_payload(self):
        with patch.object(model_calls.urllib.request, "urlopen", return_value=self._response(b'{"a": 1}')) as m:
            result = post_json("http://x/v1/chat/completions", {"model": "m"}, {"Authorization": "Bearer k"})
        self.assertEqual(result, {"a": 1})
        req = m.call_args[0][0]
        self.assertEqual(json.loads(req.data), {"model": "m"})
        self.assertEqual(req.get_method(), "POST")

    def test_http_error_maps_to_api_error(self):
        err = urllib.error.HTTPError("http://x", 503, "Service Unavailable", {}, io.BytesIO(b"busy"))
        with patch.object(model_calls.urllib.request, "urlopen", side_effect=err):
            with self.assertRaises(ApiError) as cm:
                post_json("http://x", {})
        self.assertEqual(cm.exception.status, 503)
        self.assertEqual(cm.exception.body, "busy")

    def test_url_error_maps_to_transport_error(self):
        with patch.object(model_calls.urllib.request, "urlopen", side_effect=urllib.error.URLError("refused")):
            with self.assertRaises(TransportError):
                post_json("http://x", {})

    def test_truncated_body_maps_to_transport_error(self):
        resp = MagicMock()
        resp.read.side_effect = http.client.IncompleteRead(b"{", 10)
        with patch.object(model_calls.urllib.request, "urlopen", return_value=resp):
            with self.assertRaises(TransportError) as cm:
                post_json("http://x", {})
        self.assertTrue(is_retryable(cm.exception))

    def test_invalid_json_is_protocol_error(self):
        with patch.object(model_calls.urllib.request, "urlopen", return_value=self._response(b"<html>")):
            with self.assertRaises(ProtocolError):
                post_json("http://x", {})


if __name__ == "__main__":
    unittest.main()
