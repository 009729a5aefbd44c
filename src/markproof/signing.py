"""
signing.py — markproof Cryptographic Signing Layer

Implements:
  - Ed25519 keypair generation (RFC 8032)
  - Key loading (PEM / base64 SPKI / base64 raw) with KeyFormatError on bad input
  - Manifest signing and verification over the shared canonical form

Dependencies:
  - cryptography >= 41.0

Security model:
  - The private key never enters the build output. It lives with the
    operator (key file, secret store) and is handed to the build explicitly.
  - The public key is embedded in the bootstrap artifact only. The verifier
    receives it from that trust boundary; it is NEVER read from the manifest
    being verified, otherwise a manifest could vouch for itself.
"""

from __future__ import annotations
import base64
import binascii
import hashlib
import logging
from dataclasses import dataclass
from typing import Optional, Union

from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)
from cryptography.hazmat.primitives.serialization import (
    Encoding,
    NoEncryption,
    PrivateFormat,
    PublicFormat,
    load_der_private_key,
    load_der_public_key,
    load_pem_private_key,
    load_pem_public_key,
)

from .errors import KeyFormatError, SignatureInvalid
from .manifest import Manifest, ManifestLike, canonical_manifest_bytes, parse_manifest

logger = logging.getLogger(__name__)

PrivateKeyInput = Union[Ed25519PrivateKey, str, bytes]
PublicKeyInput = Union[Ed25519PublicKey, str, bytes]

_SIGNATURE_LENGTH = 64


# ---------------------------------------------------------------------------
# Key fingerprint
# ---------------------------------------------------------------------------

def key_fingerprint(public_key: Ed25519PublicKey) -> str:
    """
    Short, stable identifier for log lines and CLI output.
    Format: 'mp1_' + first 16 hex chars of SHA-256(raw public key).
    """
    raw = public_key.public_bytes(Encoding.Raw, PublicFormat.Raw)
    return f"mp1_{hashlib.sha256(raw).hexdigest()[:16]}"


# ---------------------------------------------------------------------------
# Key loading
# ---------------------------------------------------------------------------

def _as_bytes(value: Union[str, bytes]) -> bytes:
    return value.encode("ascii") if isinstance(value, str) else bytes(value)


def _b64decode(text: bytes) -> bytes:
    try:
        return base64.b64decode(b"".join(text.split()), validate=True)
    except (binascii.Error, ValueError) as exc:
        raise KeyFormatError(f"not valid base64: {exc}") from exc


def load_private_key(value: PrivateKeyInput) -> Ed25519PrivateKey:
    """
    Load an Ed25519 private key from:
      - an Ed25519PrivateKey (returned as-is)
      - PEM-encoded PKCS#8 text or bytes
      - base64 of the 32-byte raw seed or of PKCS#8 DER
    """
    if isinstance(value, Ed25519PrivateKey):
        return value
    try:
        data = _as_bytes(value).strip()
    except (UnicodeEncodeError, TypeError) as exc:
        raise KeyFormatError(f"unreadable private key input: {exc}") from exc
    if not data:
        raise KeyFormatError("private key is empty")

    try:
        if data.startswith(b"-----BEGIN"):
            key = load_pem_private_key(data, password=None)
        else:
            raw = _b64decode(data)
            if len(raw) == 32:
                key = Ed25519PrivateKey.from_private_bytes(raw)
            else:
                key = load_der_private_key(raw, password=None)
    except KeyFormatError:
        raise
    except (ValueError, TypeError, UnsupportedAlgorithm) as exc:
        raise KeyFormatError(f"cannot parse private key: {exc}") from exc

    if not isinstance(key, Ed25519PrivateKey):
        raise KeyFormatError(f"expected an Ed25519 key, got {type(key).__name__}")
    return key


def load_public_key(value: PublicKeyInput) -> Ed25519PublicKey:
    """
    Load an Ed25519 public key from:
      - an Ed25519PublicKey (returned as-is)
      - PEM-encoded SubjectPublicKeyInfo
      - base64 of SPKI DER (the form embedded in the bootstrap) or of the
        32 raw key bytes
    """
    if isinstance(value, Ed25519PublicKey):
        return value
    try:
        data = _as_bytes(value).strip()
    except (UnicodeEncodeError, TypeError) as exc:
        raise KeyFormatError(f"unreadable public key input: {exc}") from exc
    if not data:
        raise KeyFormatError("public key is empty")

    try:
        if data.startswith(b"-----BEGIN"):
            key = load_pem_public_key(data)
        else:
            raw = _b64decode(data)
            if len(raw) == 32:
                key = Ed25519PublicKey.from_public_bytes(raw)
            else:
                key = load_der_public_key(raw)
    except KeyFormatError:
        raise
    except (ValueError, TypeError, UnsupportedAlgorithm) as exc:
        raise KeyFormatError(f"cannot parse public key: {exc}") from exc

    if not isinstance(key, Ed25519PublicKey):
        raise KeyFormatError(f"expected an Ed25519 key, got {type(key).__name__}")
    return key


def public_key_b64(public_key: Ed25519PublicKey) -> str:
    """Base64 SPKI DER: the value substituted into the bootstrap template."""
    der = public_key.public_bytes(Encoding.DER, PublicFormat.SubjectPublicKeyInfo)
    return base64.b64encode(der).decode("ascii")


# ---------------------------------------------------------------------------
# Keypair management
# ---------------------------------------------------------------------------

@dataclass
class KeyMaterial:
    """An Ed25519 public key, optionally with its private half."""
    public_key: Ed25519PublicKey
    private_key: Optional[Ed25519PrivateKey] = None

    @classmethod
    def generate(cls) -> "KeyMaterial":
        """Generate a new Ed25519 keypair."""
        sk = Ed25519PrivateKey.generate()
        return cls(public_key=sk.public_key(), private_key=sk)

    @property
    def can_sign(self) -> bool:
        return self.private_key is not None

    @property
    def public_key_b64(self) -> str:
        return public_key_b64(self.public_key)

    @property
    def fingerprint(self) -> str:
        return key_fingerprint(self.public_key)

    def private_key_pem(self) -> str:
        """Export private key as PKCS#8 PEM. NEVER publish this."""
        if self.private_key is None:
            raise KeyFormatError("no private key available to export")
        return self.private_key.private_bytes(
            Encoding.PEM, PrivateFormat.PKCS8, NoEncryption()
        ).decode("ascii")


def derive_or_supply_keypair(
    private_key: Optional[PrivateKeyInput] = None,
    public_key: Optional[PublicKeyInput] = None,
) -> Optional[KeyMaterial]:
    """
    Resolve the build's key material.

    - private only: public key is derived from it
    - public only: verification-only build (bootstrap embeds the key, the
      manifest stays unsigned and every load will fail closed)
    - both: they must belong together
    - neither: returns None (unsigned development build)
    """
    if private_key is None and public_key is None:
        return None

    sk = load_private_key(private_key) if private_key is not None else None
    pk = load_public_key(public_key) if public_key is not None else None

    if sk is not None:
        derived = sk.public_key()
        if pk is not None and public_key_b64(pk) != public_key_b64(derived):
            raise KeyFormatError("supplied public key does not match the private key")
        pk = derived

    return KeyMaterial(public_key=pk, private_key=sk)


# ---------------------------------------------------------------------------
# Manifest signing
# ---------------------------------------------------------------------------

def sign_manifest(manifest: Manifest, private_key: PrivateKeyInput) -> Manifest:
    """
    Sign a manifest with Ed25519.

    Process:
      1. Load the private key (KeyFormatError on bad input).
      2. Canonicalize the manifest (signature and urls excluded).
      3. Sign the canonical bytes.
      4. Return a copy with ``signature`` set to lowercase hex.
    """
    sk = load_private_key(private_key)
    payload = canonical_manifest_bytes(manifest)
    sig = sk.sign(payload)
    logger.debug("Signed manifest %s with key %s", manifest.version, key_fingerprint(sk.public_key()))
    return manifest.with_signature(sig.hex())


def verify_manifest(manifest: ManifestLike, public_key: PublicKeyInput) -> Manifest:
    """
    Verify a manifest's Ed25519 signature against an externally sourced key.

    ``public_key`` must come from the bootstrap artifact, never from the
    manifest. Raw mappings are validated first (ManifestMalformed).
    Returns the parsed Manifest on success; raises SignatureInvalid otherwise.
    """
    if not isinstance(manifest, Manifest):
        manifest = parse_manifest(manifest)
    pk = load_public_key(public_key)

    if not manifest.signature:
        raise SignatureInvalid("manifest carries no signature but a verification key is embedded")

    try:
        sig = bytes.fromhex(manifest.signature)
    except ValueError as exc:
        raise SignatureInvalid("signature is not hex") from exc
    if len(sig) != _SIGNATURE_LENGTH:
        raise SignatureInvalid(f"signature must be {_SIGNATURE_LENGTH} bytes, got {len(sig)}")

    try:
        pk.verify(sig, canonical_manifest_bytes(manifest))
    except InvalidSignature as exc:
        raise SignatureInvalid(f"signature does not verify under key {key_fingerprint(pk)}") from exc
    return manifest
