"""
test_integrity.py — digest primitives, SRI pins and resource path rules
"""

import base64
import hashlib
import unittest

from markproof.errors import ResourceHashMismatch
from markproof.integrity import (
    check_sri,
    digest_hex,
    is_safe_resource_path,
    is_tagged_digest,
    parse_tagged_digest,
    sri_digest_b64,
    sri_string,
    tagged_digest,
    verify_resource,
)


class TestTaggedDigest(unittest.TestCase):

    def test_sha256_default(self):
        self.assertEqual(tagged_digest(b"x"), "sha256-" + hashlib.sha256(b"x").hexdigest())

    def test_other_algorithms(self):
        self.assertEqual(digest_hex(b"x", "sha512"), hashlib.sha512(b"x").hexdigest())
        self.assertTrue(tagged_digest(b"x", "sha384").startswith("sha384-"))

    def test_unsupported_algorithm(self):
        with self.assertRaises(ValueError):
            digest_hex(b"x", "md5")

    def test_parse_round_trip(self):
        alg, hex_part = parse_tagged_digest(tagged_digest(b"hello"))
        self.assertEqual(alg, "sha256")
        self.assertEqual(hex_part, hashlib.sha256(b"hello").hexdigest())

    def test_parse_rejects_bad_values(self):
        for bad in ["", "sha256", "md5-" + "0" * 32, "sha256-" + "0" * 63,
                    "sha256-" + "A" * 64, "sha512-" + "0" * 64]:
            with self.subTest(bad=bad):
                with self.assertRaises(ValueError):
                    parse_tagged_digest(bad)
                self.assertFalse(is_tagged_digest(bad))


class TestVerifyResource(unittest.TestCase):

    def test_match_returns_expected(self):
        expected = tagged_digest(b"body")
        self.assertEqual(verify_resource(b"body", expected, "/a.js"), expected)

    def test_mismatch_raises_with_both_digests(self):
        expected = tagged_digest(b"body")
        with self.assertRaises(ResourceHashMismatch) as ctx:
            verify_resource(b"tampered", expected, "/a.js")
        self.assertEqual(ctx.exception.path, "/a.js")
        self.assertEqual(ctx.exception.expected, expected)
        self.assertEqual(ctx.exception.got, tagged_digest(b"tampered"))

    def test_algorithm_taken_from_tag(self):
        expected = tagged_digest(b"body", "sha384")
        verify_resource(b"body", expected)
        with self.assertRaises(ResourceHashMismatch):
            verify_resource(b"Body", expected)


class TestSri(unittest.TestCase):

    def test_sri_digest_is_base64_sha256(self):
        expected = base64.b64encode(hashlib.sha256(b"js").digest()).decode()
        self.assertEqual(sri_digest_b64(b"js"), expected)
        self.assertEqual(sri_string(b"js"), "sha256-" + expected)

    def test_check_sri(self):
        self.assertTrue(check_sri(b"js", sri_string(b"js")))
        self.assertFalse(check_sri(b"js ", sri_string(b"js")))
        self.assertFalse(check_sri(b"js", "md5-abc"))
        self.assertFalse(check_sri(b"js", "garbage"))


class TestPathSafety(unittest.TestCase):

    def test_safe(self):
        for p in ["/app.js", "/assets/img/logo.png", "/a.b.c", "/.well-known/x"]:
            with self.subTest(p=p):
                self.assertTrue(is_safe_resource_path(p))

    def test_unsafe(self):
        for p in ["", "app.js", "//cdn/x.js", "/a//b", "/a/../b", "/..", "/.",
                  "/a\\b", "/a?x", "/a#frag", "/dir/"]:
            with self.subTest(p=p):
                self.assertFalse(is_safe_resource_path(p))


if __name__ == "__main__":
    unittest.main()
