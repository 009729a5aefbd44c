"""
test_canonicalization_properties.py — Canonical Form Determinism Tests

The signer and the verifier must produce the same bytes for the same
manifest. These tests pin the canonical JSON rules and the manifest's
signable view.

Run:
  pytest tests/test_canonicalization_properties.py -v
"""

import json
import unittest

from markproof.canonical_json import CanonicalEncodingError, canonical_bytes, canonical_dumps, is_utf8_text
from markproof.manifest import (
    Manifest,
    ResourceEntry,
    canonical_manifest,
    canonical_manifest_bytes,
    manifest_digest_hex,
    parse_manifest,
)

HASH_A = "sha256-" + "a" * 64
HASH_B = "sha256-" + "b" * 64
HASH_Z = "sha256-" + "f" * 64


class TestCanonicalJson(unittest.TestCase):
    """Property: canonical JSON is deterministic."""

    def test_canonical_is_idempotent(self):
        data = {"name": "test", "value": 42, "items": [1, 2, 3]}
        self.assertEqual(canonical_bytes(data), canonical_bytes(data))

    def test_canonical_ignores_insertion_order(self):
        self.assertEqual(
            canonical_bytes({"z": 1, "a": 2, "m": 3}),
            canonical_bytes({"a": 2, "m": 3, "z": 1}),
        )

    def test_canonical_no_whitespace(self):
        canonical_str = canonical_dumps({"key": "value", "nested": {"inner": True}})
        self.assertNotIn(" ", canonical_str)
        self.assertNotIn("\n", canonical_str)

    def test_canonical_keeps_non_ascii_verbatim(self):
        self.assertEqual(canonical_dumps({"k": "é"}), '{"k":"é"}')

    def test_canonical_rejects_nan(self):
        with self.assertRaises(CanonicalEncodingError):
            canonical_dumps({"v": float("nan")})

    def test_canonical_rejects_lone_surrogate(self):
        with self.assertRaises(CanonicalEncodingError):
            canonical_bytes({"v": "\ud800"})
        self.assertFalse(is_utf8_text("a\udfffb"))
        self.assertTrue(is_utf8_text("café \U0001f600"))

    def test_keys_sorted_by_code_point(self):
        # U+FF61 sorts before U+1F600 by code point but after it by UTF-16 unit.
        out = canonical_dumps({"\U0001f600": 1, "｡": 2})
        self.assertEqual(out, '{"｡":2,"\U0001f600":1}')


class TestCanonicalManifest(unittest.TestCase):

    def _manifest(self, **kw):
        base = dict(
            version="1.0.0",
            timestamp="2025-01-01T00:00:00.000Z",
            resources={
                "/z.js": ResourceEntry(HASH_Z, 50),
                "/a.js": ResourceEntry(HASH_A, 100),
            },
        )
        base.update(kw)
        return Manifest(**base)

    def test_exact_bytes(self):
        expected = (
            '{"resources":{"/a.js":{"hash":"%s","size":100},"/z.js":{"hash":"%s","size":50}},'
            '"timestamp":"2025-01-01T00:00:00.000Z","version":"1.0.0"}' % (HASH_A, HASH_Z)
        ).encode("utf-8")
        self.assertEqual(canonical_manifest_bytes(self._manifest()), expected)

    def test_resource_keys_sorted(self):
        keys = list(json.loads(canonical_manifest_bytes(self._manifest()))["resources"])
        self.assertEqual(keys, ["/a.js", "/z.js"])

    def test_excludes_signature(self):
        signed = self._manifest(signature="ab" * 64)
        self.assertEqual(canonical_manifest_bytes(signed), canonical_manifest_bytes(self._manifest()))
        self.assertNotIn("signature", canonical_manifest(signed))

    def test_excludes_urls(self):
        with_urls = self._manifest(resources={
            "/a.js": ResourceEntry(HASH_A, 100, ("https://cdn.example.net/a.js",)),
            "/z.js": ResourceEntry(HASH_Z, 50),
        })
        self.assertEqual(canonical_manifest_bytes(with_urls), canonical_manifest_bytes(self._manifest()))

    def test_independent_of_insertion_order(self):
        reordered = self._manifest(resources={
            "/a.js": ResourceEntry(HASH_A, 100),
            "/z.js": ResourceEntry(HASH_Z, 50),
        })
        self.assertEqual(canonical_manifest_bytes(reordered), canonical_manifest_bytes(self._manifest()))

    def test_wire_mapping_and_dataclass_agree(self):
        wire = {
            "signature": "00",
            "resources": {
                "/z.js": {"size": 50, "hash": HASH_Z, "urls": ["https://m/z.js"]},
                "/a.js": {"hash": HASH_A, "size": 100},
            },
            "timestamp": "2025-01-01T00:00:00.000Z",
            "version": "1.0.0",
        }
        self.assertEqual(canonical_manifest_bytes(wire), canonical_manifest_bytes(self._manifest()))

    def test_ignores_injected_fields(self):
        wire = json.loads(json.dumps(self._manifest().to_dict()))
        wire["publicKey"] = "attacker-key"
        wire["resources"]["/a.js"]["extra"] = "x"
        self.assertEqual(canonical_manifest_bytes(wire), canonical_manifest_bytes(self._manifest()))
        self.assertNotIn(b"attacker-key", canonical_manifest_bytes(wire))

    def test_digest_changes_with_content(self):
        changed = self._manifest(resources={
            "/a.js": ResourceEntry(HASH_B, 100),
            "/z.js": ResourceEntry(HASH_Z, 50),
        })
        self.assertNotEqual(manifest_digest_hex(changed), manifest_digest_hex(self._manifest()))

    def test_digest_changes_with_version(self):
        self.assertNotEqual(
            manifest_digest_hex(self._manifest(version="1.0.1")),
            manifest_digest_hex(self._manifest()),
        )

    def test_parse_then_canonicalize_round_trip(self):
        m = self._manifest()
        self.assertEqual(canonical_manifest_bytes(parse_manifest(m.to_dict())), canonical_manifest_bytes(m))


if __name__ == "__main__":
    unittest.main()
