"""Shared fixtures: keypairs, a fixed resource set and an in-memory deployment."""

from __future__ import annotations

from typing import Dict, Mapping, Optional

import pytest

from markproof.anchor import TrustAnchor, assemble_trust_anchor
from markproof.integrity import sri_digest_b64
from markproof.manifest import Manifest, build_manifest, dumps_manifest
from markproof.signing import KeyMaterial, sign_manifest
from markproof.transport import MappingTransport, join_url

ORIGIN = "https://app.example.com"
FIXED_TIMESTAMP = "2025-01-01T00:00:00.000Z"


@pytest.fixture()
def keys() -> KeyMaterial:
    return KeyMaterial.generate()


@pytest.fixture()
def other_keys() -> KeyMaterial:
    return KeyMaterial.generate()


@pytest.fixture()
def files() -> Dict[str, bytes]:
    return {
        "/app.html": b"<main id='app'></main>",
        "/app.js": b"console.log('hello');",
        "/style.css": b"body { margin: 0 }",
    }


@pytest.fixture()
def signed_manifest(files: Dict[str, bytes], keys: KeyMaterial) -> Manifest:
    manifest = build_manifest(files, "1.0.0", timestamp=FIXED_TIMESTAMP)
    return sign_manifest(manifest, keys.private_key)


def deploy(
    manifest: Manifest,
    files: Mapping[str, bytes],
    base_url: str = ORIGIN,
    manifest_bytes: Optional[bytes] = None,
) -> MappingTransport:
    """An in-memory host serving ``manifest`` and ``files`` under ``base_url``."""
    contents = {join_url(base_url, p): data for p, data in files.items()}
    contents[join_url(base_url, "/manifest.json")] = (
        manifest_bytes if manifest_bytes is not None else dumps_manifest(manifest)
    )
    return MappingTransport(contents)


def make_anchor(update_mode: str = "auto", manifest_digest: Optional[str] = None) -> TrustAnchor:
    return assemble_trust_anchor(
        ORIGIN,
        sri_digest_b64(b"// bootstrap"),
        update_mode=update_mode,
        manifest_digest_hex=manifest_digest,
    )
