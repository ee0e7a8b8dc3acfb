import unittest
from unittest.mock import Mock

import requests

from core.utils import (
    canonical_json,
    content_hash,
    is_retryable_error,
    round_half_up,
    strip_null_bytes
)


class TestRoundHalfUp(unittest.TestCase):
    def test_half_goes_up(self):
        self.assertEqual(round_half_up(89.5), 90)
        self.assertEqual(round_half_up(0.5), 1)
        self.assertEqual(round_half_up(2.5), 3)

    def test_below_half_goes_down(self):
        self.assertEqual(round_half_up(89.49), 89)
        self.assertEqual(round_half_up(0), 0)

    def test_integer_input(self):
        self.assertEqual(round_half_up(100), 100)


class TestContentHash(unittest.TestCase):
    def test_key_order_does_not_matter(self):
        self.assertEqual(content_hash({"a": 1, "b": [1, 2]}), content_hash({"b": [1, 2], "a": 1}))

    def test_different_values_differ(self):
        self.assertNotEqual(content_hash({"a": 1}), content_hash({"a": 2}))

    def test_canonical_json_is_compact_and_sorted(self):
        self.assertEqual(canonical_json({"b": 1, "a": "x"}), '{"a":"x","b":1}')


class TestRetryableErrors(unittest.TestCase):
    def _http_error(self, status):
        response = Mock(status_code=status)
        return requests.HTTPError(response=response)

    def test_timeouts_and_5xx_retry(self):
        self.assertTrue(is_retryable_error(requests.Timeout()))
        self.assertTrue(is_retryable_error(requests.ConnectionError()))
        self.assertTrue(is_retryable_error(self._http_error(503)))

    def test_4xx_and_other_errors_do_not_retry(self):
        self.assertFalse(is_retryable_error(self._http_error(404)))
        self.assertFalse(is_retryable_error(ValueError("boom")))


class TestStripNullBytes(unittest.TestCase):
    def test_strips(self):
        self.assertEqual(strip_null_bytes("ab\x00c"), "abc")

    def test_empty_becomes_none(self):
        self.assertIsNone(strip_null_bytes("\x00"))
        self.assertIsNone(strip_null_bytes(None))


if __name__ == '__main__':
    unittest.main()
