"""
manifest.py — markproof Manifest Model, Canonical Form and Builder

What it does:
  - Parses and validates the manifest wire format (JSON Schema + explicit
    type checks) into frozen dataclasses
  - Produces the canonical signing form shared by signer and verifier
  - Computes the canonical manifest digest used to pin locked-mode anchors
  - Builds a manifest from a set of named content blobs

Canonical form covers exactly {version, timestamp, resources{path: {hash, size}}}.
`urls` (delivery hints), `signature`, and any other field present on the
wire (for example an injected "publicKey") are never part of it.
"""

from __future__ import annotations
import datetime
import json
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple, Union

from jsonschema import Draft202012Validator

from .canonical_json import CanonicalEncodingError, canonical_bytes, is_utf8_text, sha256_hex
from .errors import ManifestMalformed
from .integrity import DEFAULT_ALGORITHM, is_safe_resource_path, is_tagged_digest, tagged_digest


# Largest integer a browser verifier can hold exactly (2**53 - 1).
MAX_SAFE_SIZE = 9007199254740991

MANIFEST_SCHEMA: Dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "title": "markproof manifest",
    "type": "object",
    "required": ["version", "timestamp", "resources"],
    "properties": {
        "version": {"type": "string", "minLength": 1},
        "timestamp": {"type": "string"},
        "resources": {
            "type": "object",
            "propertyNames": {"pattern": "^/"},
            "additionalProperties": {
                "type": "object",
                "required": ["hash", "size"],
                "properties": {
                    "hash": {
                        "type": "string",
                        "pattern": "^(sha256|sha384|sha512)-[0-9a-f]+$",
                    },
                    "size": {"type": "integer", "minimum": 0, "maximum": MAX_SAFE_SIZE},
                    "urls": {"type": "array", "items": {"type": "string"}},
                },
            },
        },
        "signature": {"type": "string"},
    },
}

_validator = Draft202012Validator(MANIFEST_SCHEMA)


@dataclass(frozen=True)
class ResourceEntry:
    hash: str
    size: int
    urls: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"hash": self.hash, "size": self.size}
        if self.urls:
            out["urls"] = list(self.urls)
        return out

    def signed_fields(self) -> Dict[str, Any]:
        """The subset of this entry covered by the manifest signature."""
        return {"hash": self.hash, "size": self.size}


@dataclass(frozen=True)
class Manifest:
    """The signed unit of trust: one build's complete resource set."""
    version: str
    timestamp: str
    resources: Dict[str, ResourceEntry] = field(default_factory=dict)
    signature: Optional[str] = None

    @property
    def is_signed(self) -> bool:
        return bool(self.signature)

    def with_signature(self, signature: Optional[str]) -> "Manifest":
        return replace(self, signature=signature)

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "version": self.version,
            "timestamp": self.timestamp,
            "resources": {p: e.to_dict() for p, e in sorted(self.resources.items())},
        }
        if self.signature:
            out["signature"] = self.signature
        return out

    @classmethod
    def from_dict(cls, data: Any) -> "Manifest":
        return parse_manifest(data)


ManifestLike = Union[Manifest, Mapping[str, Any]]


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------

def parse_manifest(data: Any) -> Manifest:
    """
    Validate a decoded wire manifest and return a Manifest.

    Raises ManifestMalformed for any missing field, wrong type or unsafe
    resource path. Unknown top-level keys are ignored.
    """
    if not isinstance(data, Mapping):
        raise ManifestMalformed(f"expected a JSON object, got {type(data).__name__}")

    errors = sorted(_validator.iter_errors(data), key=lambda e: [str(p) for p in e.absolute_path])
    if errors:
        err = errors[0]
        where = "/".join(str(p) for p in err.absolute_path) or "<root>"
        raise ManifestMalformed(f"{where}: {err.message}")

    for field_name in ("version", "timestamp", "signature"):
        if field_name in data and not is_utf8_text(data[field_name]):
            raise ManifestMalformed(f"{field_name}: not valid UTF-8 text")

    resources: Dict[str, ResourceEntry] = {}
    for path, entry in data["resources"].items():
        if not is_utf8_text(path):
            raise ManifestMalformed(f"resource path {path!r} is not valid UTF-8 text")
        if not is_safe_resource_path(path):
            raise ManifestMalformed(f"unsafe resource path: {path!r}")
        if not is_tagged_digest(entry["hash"]):
            raise ManifestMalformed(f"resources/{path}/hash: wrong digest length for its algorithm")
        size = entry["size"]
        # JSON Schema accepts 5.0 as an integer; the canonical form would not.
        if not isinstance(size, int) or isinstance(size, bool):
            raise ManifestMalformed(f"resources/{path}/size: must be an integer")
        urls = tuple(entry.get("urls") or ())
        if not all(is_utf8_text(url) for url in urls):
            raise ManifestMalformed(f"resources/{path}/urls: not valid UTF-8 text")
        resources[path] = ResourceEntry(
            hash=entry["hash"],
            size=size,
            urls=urls,
        )

    return Manifest(
        version=data["version"],
        timestamp=data["timestamp"],
        resources=resources,
        signature=data.get("signature") or None,
    )


def loads_manifest(raw: Union[bytes, str]) -> Manifest:
    """Decode manifest bytes fetched from the delivery host."""
    try:
        data = json.loads(raw)
    except (ValueError, UnicodeDecodeError) as exc:
        raise ManifestMalformed(f"not valid JSON: {exc}") from exc
    return parse_manifest(data)


def dumps_manifest(manifest: Manifest) -> bytes:
    """Serialize a manifest to its wire form (sorted, human-readable)."""
    text = json.dumps(manifest.to_dict(), indent=2, sort_keys=True, ensure_ascii=False)
    return (text + "\n").encode("utf-8")


# ---------------------------------------------------------------------------
# Canonical form
# ---------------------------------------------------------------------------

def canonical_manifest(manifest: ManifestLike) -> Dict[str, Any]:
    """
    Return the signable view of a manifest.

    Raw mappings are validated first, so the verifier can hand over exactly
    what it decoded from the wire.
    """
    if not isinstance(manifest, Manifest):
        manifest = parse_manifest(manifest)
    return {
        "version": manifest.version,
        "timestamp": manifest.timestamp,
        "resources": {
            path: manifest.resources[path].signed_fields()
            for path in sorted(manifest.resources)
        },
    }


def canonical_manifest_bytes(manifest: ManifestLike) -> bytes:
    """The exact byte sequence that is signed and verified."""
    try:
        return canonical_bytes(canonical_manifest(manifest))
    except CanonicalEncodingError as exc:
        raise ManifestMalformed(f"no canonical form: {exc}") from exc


def manifest_digest_hex(manifest: ManifestLike) -> str:
    """SHA-256 hex of the canonical form; the locked-mode pin."""
    return sha256_hex(canonical_manifest_bytes(manifest))


# ---------------------------------------------------------------------------
# Building
# ---------------------------------------------------------------------------

def build_manifest(
    files: Mapping[str, Union[bytes, str]],
    version: str,
    timestamp: Optional[str] = None,
    mirrors: Optional[Mapping[str, Sequence[str]]] = None,
    algorithm: str = DEFAULT_ALGORITHM,
) -> Manifest:
    """
    Build an unsigned manifest from resource path -> content.

    ``mirrors`` optionally maps a path to alternate delivery URLs. They are
    carried on the entry as hints and never signed.
    """
    if not version:
        raise ManifestMalformed("version must be a non-empty string")

    mirrors = mirrors or {}
    unknown = set(mirrors) - set(files)
    if unknown:
        raise ManifestMalformed(f"mirrors given for unlisted resources: {sorted(unknown)}")

    resources: Dict[str, ResourceEntry] = {}
    for path in sorted(files):
        if not is_safe_resource_path(path):
            raise ManifestMalformed(f"unsafe resource path: {path!r}")
        content = files[path]
        data = content.encode("utf-8") if isinstance(content, str) else bytes(content)
        resources[path] = ResourceEntry(
            hash=tagged_digest(data, algorithm),
            size=len(data),
            urls=tuple(mirrors.get(path, ())),
        )

    return Manifest(
        version=version,
        timestamp=timestamp or utc_now_iso(),
        resources=resources,
    )


def utc_now_iso() -> str:
    """Current UTC time, ISO 8601 with millisecond precision and 'Z' suffix."""
    now = datetime.datetime.now(datetime.timezone.utc)
    return now.isoformat(timespec="milliseconds").replace("+00:00", "Z")
