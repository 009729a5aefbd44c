"""
integrity.py — markproof Shared Integrity Primitives

Single source of truth for:
  - Algorithm-tagged content digests ("sha256-<hex>")
  - Subresource-Integrity digests ("sha256-<base64>") for the bootstrap pin
  - Resource path safety validation

The build pipeline, the resource checker and the transports all import from
here. No duplicated digest code.
"""

from __future__ import annotations
import base64
import hashlib
import hmac
from typing import Tuple

from .errors import ResourceHashMismatch

# ---------------------------------------------------------------------------
# Tagged digests
# ---------------------------------------------------------------------------

DEFAULT_ALGORITHM = "sha256"

SUPPORTED_ALGORITHMS = frozenset({"sha256", "sha384", "sha512"})

_HEX_LENGTHS = {"sha256": 64, "sha384": 96, "sha512": 128}


def digest_hex(data: bytes, algorithm: str = DEFAULT_ALGORITHM) -> str:
    """Lowercase hex digest of ``data`` under a supported algorithm."""
    if algorithm not in SUPPORTED_ALGORITHMS:
        raise ValueError(f"Unsupported digest algorithm: {algorithm!r}")
    return hashlib.new(algorithm, data).hexdigest()


def tagged_digest(data: bytes, algorithm: str = DEFAULT_ALGORITHM) -> str:
    """Algorithm-tagged digest as written into manifests, e.g. ``sha256-ab12...``."""
    return f"{algorithm}-{digest_hex(data, algorithm)}"


def parse_tagged_digest(tagged: str) -> Tuple[str, str]:
    """
    Split ``<alg>-<hex>`` into ``(alg, hex)``.
    Raises ValueError for unknown algorithms or malformed hex.
    """
    algorithm, sep, hex_part = tagged.partition("-")
    if not sep or algorithm not in SUPPORTED_ALGORITHMS:
        raise ValueError(f"Unsupported or untagged digest: {tagged!r}")
    if len(hex_part) != _HEX_LENGTHS[algorithm]:
        raise ValueError(f"Digest has wrong length for {algorithm}: {tagged!r}")
    if any(c not in "0123456789abcdef" for c in hex_part):
        raise ValueError(f"Digest is not lowercase hex: {tagged!r}")
    return algorithm, hex_part


def is_tagged_digest(value: str) -> bool:
    try:
        parse_tagged_digest(value)
        return True
    except ValueError:
        return False


def verify_resource(content: bytes, expected_hash: str, path: str = "<resource>") -> str:
    """
    Check ``content`` against an algorithm-tagged digest from a verified manifest.

    The digest is recomputed with the algorithm named by the tag prefix.
    Returns the matching tagged digest; raises ResourceHashMismatch otherwise.
    """
    algorithm, expected_hex = parse_tagged_digest(expected_hash)
    got_hex = digest_hex(content, algorithm)
    if not hmac.compare_digest(got_hex, expected_hex):
        raise ResourceHashMismatch(path, expected_hash, f"{algorithm}-{got_hex}")
    return expected_hash


# ---------------------------------------------------------------------------
# Subresource Integrity
# ---------------------------------------------------------------------------

def sri_digest_b64(data: bytes, algorithm: str = DEFAULT_ALGORITHM) -> str:
    """Base64 digest in the form browsers expect inside ``integrity=``."""
    if algorithm not in SUPPORTED_ALGORITHMS:
        raise ValueError(f"Unsupported digest algorithm: {algorithm!r}")
    return base64.b64encode(hashlib.new(algorithm, data).digest()).decode("ascii")


def sri_string(data: bytes, algorithm: str = DEFAULT_ALGORITHM) -> str:
    return f"{algorithm}-{sri_digest_b64(data, algorithm)}"


def check_sri(data: bytes, integrity: str) -> bool:
    """
    Return True if ``data`` satisfies an SRI value such as ``sha256-<b64>``.
    Unknown algorithms never match.
    """
    algorithm, sep, expected_b64 = integrity.strip().partition("-")
    if not sep or algorithm not in SUPPORTED_ALGORITHMS:
        return False
    return hmac.compare_digest(sri_digest_b64(data, algorithm), expected_b64)


# ---------------------------------------------------------------------------
# Path safety
# ---------------------------------------------------------------------------

def is_safe_resource_path(path: str) -> bool:
    """
    Resource paths are absolute URL paths under the content base:
    must start with a single '/', contain no '..' segment, no backslash,
    no empty segment and no query or fragment.
    """
    if not path.startswith("/") or path.startswith("//"):
        return False
    if "\\" in path or "?" in path or "#" in path:
        return False
    segments = path[1:].split("/")
    if any(seg in ("", ".", "..") for seg in segments):
        return False
    return True


# ---------------------------------------------------------------------------
# Build constants
# ---------------------------------------------------------------------------

BOOTSTRAP_FILENAME = "bootstrap.js"
MANIFEST_FILENAME = "manifest.json"
TRUST_ANCHOR_FILENAME = "trust_anchor.json"
INSTALLER_FILENAME = "index.html"

# Infrastructure files never listed in the manifest (they ARE the trust chain)
MANIFEST_EXCLUDE = frozenset({
    BOOTSTRAP_FILENAME,
    MANIFEST_FILENAME,
    TRUST_ANCHOR_FILENAME,
    INSTALLER_FILENAME,
})
