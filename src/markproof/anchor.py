"""
anchor.py — markproof Trust-Anchor Assembler

The trust anchor is the one artifact the user installs. It is immutable once
created and holds only public, verifiable data:

  bootstrapUrl           where to fetch the bootstrap artifact
  bootstrapDigestBase64  SHA-256 (base64, SRI form) of the bootstrap bytes
  updateMode             "locked" or "auto"
  manifestDigestHex      canonical manifest digest (locked mode only)
  originUrl              informational origin of the app

It never contains key material: the public key lives inside the bootstrap,
which the anchor pins by digest. Assembly is deterministic.
"""

from __future__ import annotations
import base64
import binascii
import json
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from .errors import TrustAnchorInvalid
from .integrity import BOOTSTRAP_FILENAME
from .runtime import render_bookmarklet
from .transport import join_url

UPDATE_MODES = ("locked", "auto")

_HEX64_RE = re.compile(r"^[0-9a-f]{64}$")


@dataclass(frozen=True)
class TrustAnchor:
    origin_url: str
    bootstrap_url: str
    bootstrap_digest_b64: str
    update_mode: str = "auto"
    manifest_digest_hex: Optional[str] = None

    def __post_init__(self) -> None:
        _validate(self)

    @property
    def is_locked(self) -> bool:
        return self.update_mode == "locked"

    @property
    def content_base_url(self) -> str:
        """Directory the bootstrap was served from; manifest and resources live beside it."""
        return self.bootstrap_url.rsplit("/", 1)[0]

    @property
    def manifest_url(self) -> str:
        return join_url(self.content_base_url, "/manifest.json")

    @property
    def bootstrap_integrity(self) -> str:
        return f"sha256-{self.bootstrap_digest_b64}"

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "originUrl": self.origin_url,
            "bootstrapUrl": self.bootstrap_url,
            "bootstrapDigestBase64": self.bootstrap_digest_b64,
            "updateMode": self.update_mode,
        }
        if self.manifest_digest_hex is not None:
            out["manifestDigestHex"] = self.manifest_digest_hex
        return out

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "TrustAnchor":
        if not isinstance(data, Mapping):
            raise TrustAnchorInvalid(f"expected an object, got {type(data).__name__}")
        missing = [k for k in ("bootstrapUrl", "bootstrapDigestBase64", "updateMode") if k not in data]
        if missing:
            raise TrustAnchorInvalid(f"missing fields: {', '.join(missing)}")
        for key in ("originUrl", "bootstrapUrl", "bootstrapDigestBase64", "updateMode", "manifestDigestHex"):
            if key in data and data[key] is not None and not isinstance(data[key], str):
                raise TrustAnchorInvalid(f"{key} must be a string")
        return cls(
            origin_url=data.get("originUrl") or data["bootstrapUrl"].rsplit("/", 1)[0],
            bootstrap_url=data["bootstrapUrl"],
            bootstrap_digest_b64=data["bootstrapDigestBase64"],
            update_mode=data["updateMode"],
            manifest_digest_hex=data.get("manifestDigestHex"),
        )

    def runtime_config(self) -> Dict[str, Any]:
        """The configuration object the bootstrap runtime reads."""
        cfg = {
            "originUrl": self.origin_url,
            "bootstrapUrl": self.bootstrap_url,
            "updateMode": self.update_mode,
        }
        if self.manifest_digest_hex is not None:
            cfg["manifestDigestHex"] = self.manifest_digest_hex
        return cfg

    def to_data_url(self) -> str:
        """
        Minimal isolated loader page: a single SRI-pinned script tag carrying
        the runtime configuration as data attributes.
        """
        html = (
            f'<script src={self.bootstrap_url}'
            f' integrity={self.bootstrap_integrity}'
            f' crossorigin=anonymous'
            f' data-mode={self.update_mode}'
        )
        if self.manifest_digest_hex is not None:
            html += f" data-hash={self.manifest_digest_hex}"
        html += " onerror=document.body.textContent='Secure\\x20app\\x20load\\x20failed.'></script>"
        return "data:text/html;base64," + base64.b64encode(html.encode("utf-8")).decode("ascii")

    def to_bookmarklet(self) -> str:
        """``javascript:`` URL that opens the isolated loader page."""
        return render_bookmarklet(self.runtime_config(), self.bootstrap_url, self.bootstrap_integrity)


def _validate(anchor: TrustAnchor) -> None:
    if anchor.update_mode not in UPDATE_MODES:
        raise TrustAnchorInvalid(f"updateMode must be one of {UPDATE_MODES}, got {anchor.update_mode!r}")
    if not anchor.bootstrap_url.startswith(("https://", "http://")):
        raise TrustAnchorInvalid(f"bootstrapUrl must be an http(s) URL: {anchor.bootstrap_url!r}")
    try:
        raw = base64.b64decode(anchor.bootstrap_digest_b64, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise TrustAnchorInvalid("bootstrapDigestBase64 is not base64") from exc
    if len(raw) != 32:
        raise TrustAnchorInvalid("bootstrapDigestBase64 must encode a 32-byte SHA-256 digest")

    if anchor.update_mode == "locked":
        if anchor.manifest_digest_hex is None or not _HEX64_RE.match(anchor.manifest_digest_hex):
            raise TrustAnchorInvalid("locked mode requires a 64-char lowercase hex manifestDigestHex")
    elif anchor.manifest_digest_hex is not None:
        raise TrustAnchorInvalid("manifestDigestHex is only meaningful in locked mode")


def assemble_trust_anchor(
    origin_url: str,
    bootstrap_digest_b64: str,
    update_mode: str = "auto",
    manifest_digest_hex: Optional[str] = None,
    bootstrap_url: Optional[str] = None,
) -> TrustAnchor:
    """
    Build a trust anchor for one installation.

    ``bootstrap_url`` defaults to ``<origin>/bootstrap.js``. In auto mode a
    supplied manifest digest is dropped, so callers can always pass the
    build's digest.
    """
    origin = origin_url.rstrip("/")
    return TrustAnchor(
        origin_url=origin,
        bootstrap_url=bootstrap_url or join_url(origin, BOOTSTRAP_FILENAME),
        bootstrap_digest_b64=bootstrap_digest_b64,
        update_mode=update_mode,
        manifest_digest_hex=manifest_digest_hex if update_mode == "locked" else None,
    )


def load_trust_anchor(path: Path) -> TrustAnchor:
    """Read an anchor written by the build (``trust_anchor.json``)."""
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
    except ValueError as exc:
        raise TrustAnchorInvalid(f"{path}: not valid JSON: {exc}") from exc
    return TrustAnchor.from_dict(data)
