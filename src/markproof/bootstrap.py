"""
bootstrap.py — markproof Bootstrap Verification State Machine

Drives one load of the application from a trust anchor:

  INIT -> MANIFEST_FETCHING -> MANIFEST_VERIFYING -> [LOCKED_PIN_CHECK]
       -> RESOURCES_FETCHING -> RESOURCES_VERIFYING -> RENDERING -> DONE

Any state can end in FAILED. Every state fails closed: nothing is rendered
unless every earlier state succeeded. There are no automatic retries; a
manual retry is a fresh call to ``run()``, which starts again from INIT
against a freshly fetched manifest.

Resource fetch+verify runs in parallel inside the resources states; all
other work is strictly sequential. A ``threading.Event`` passed to ``run()``
aborts the load between states and inside the resource pool.
"""

from __future__ import annotations
import hmac
import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Protocol

from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PublicKey

from .anchor import TrustAnchor
from .errors import (
    LoadCancelled,
    ManifestPinMismatch,
    ManifestUnreachable,
    MarkproofError,
    RenderError,
    ResourceHashMismatch,
    ResourceMissing,
)
from .integrity import check_sri, is_safe_resource_path, sri_string
from .manifest import Manifest, loads_manifest, manifest_digest_hex
from .resources import DEFAULT_MAX_WORKERS, ResourceIntegrityChecker
from .runtime import extract_embedded_public_key
from .signing import PublicKeyInput, key_fingerprint, load_public_key, verify_manifest
from .transport import FetchError, IntegrityPinError, Transport

logger = logging.getLogger(__name__)

UNSIGNED_WARNING = (
    "UNAUTHENTICATED LOAD: no verification key is embedded in the bootstrap. "
    "The manifest signature is NOT checked; anyone controlling the host can "
    "change what runs. Use signed builds for anything but local development."
)


class BootState(str, Enum):
    INIT = "init"
    MANIFEST_FETCHING = "manifest_fetching"
    MANIFEST_VERIFYING = "manifest_verifying"
    LOCKED_PIN_CHECK = "locked_pin_check"
    RESOURCES_FETCHING = "resources_fetching"
    RESOURCES_VERIFYING = "resources_verifying"
    RENDERING = "rendering"
    DONE = "done"
    FAILED = "failed"


class Renderer(Protocol):
    def render(self, resources: Dict[str, bytes], manifest: Manifest) -> None:
        ...


class DirectoryRenderer:
    """Write the verified resource set to a local directory."""

    def __init__(self, outdir: Path):
        self.outdir = Path(outdir)

    def render(self, resources: Dict[str, bytes], manifest: Manifest) -> None:
        for path in sorted(resources):
            if not is_safe_resource_path(path):
                raise ValueError(f"refusing to write unsafe path {path!r}")
            target = self.outdir / path.lstrip("/")
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(resources[path])


@dataclass
class LoadResult:
    """Outcome of one run of the state machine."""
    state: BootState
    history: List[BootState] = field(default_factory=list)
    manifest: Optional[Manifest] = None
    resources: Dict[str, bytes] = field(default_factory=dict)
    error: Optional[MarkproofError] = None
    authenticated: bool = False

    @property
    def ok(self) -> bool:
        return self.state is BootState.DONE

    @property
    def failure_class(self) -> Optional[str]:
        """'integrity', 'network', 'malformed', 'render' or 'cancelled'."""
        return self.error.failure_class if self.error is not None else None

    @property
    def failure_reason(self) -> Optional[str]:
        return type(self.error).__name__ if self.error is not None else None


class BootstrapVerifier:
    """
    One installation's verifier. ``public_key`` is the constant embedded in
    the bootstrap artifact; it is the only key ever used to check manifests.
    """

    def __init__(
        self,
        anchor: TrustAnchor,
        transport: Transport,
        public_key: Optional[PublicKeyInput] = None,
        renderer: Optional[Renderer] = None,
        max_workers: int = DEFAULT_MAX_WORKERS,
    ):
        self.anchor = anchor
        self.transport = transport
        self.public_key: Optional[Ed25519PublicKey] = (
            load_public_key(public_key) if public_key is not None else None
        )
        self.renderer = renderer
        self.checker = ResourceIntegrityChecker(transport, anchor.content_base_url, max_workers)

    @classmethod
    def from_anchor(
        cls,
        anchor: TrustAnchor,
        transport: Transport,
        renderer: Optional[Renderer] = None,
        max_workers: int = DEFAULT_MAX_WORKERS,
    ) -> "BootstrapVerifier":
        """
        Fetch the bootstrap artifact under the anchor's integrity pin and take
        the embedded public key from it. This is the platform step that
        precedes the state machine.
        """
        try:
            data = transport.fetch(anchor.bootstrap_url, integrity=anchor.bootstrap_integrity)
        except IntegrityPinError as exc:
            raise ResourceHashMismatch(anchor.bootstrap_url, anchor.bootstrap_integrity, exc.reason) from exc
        except FetchError as exc:
            raise ResourceMissing(anchor.bootstrap_url, exc.reason) from exc
        return cls.from_bootstrap(anchor, transport, data, renderer, max_workers)

    @classmethod
    def from_bootstrap(
        cls,
        anchor: TrustAnchor,
        transport: Transport,
        bootstrap: bytes,
        renderer: Optional[Renderer] = None,
        max_workers: int = DEFAULT_MAX_WORKERS,
    ) -> "BootstrapVerifier":
        """Same as ``from_anchor`` for bootstrap bytes obtained out of band."""
        if not check_sri(bootstrap, anchor.bootstrap_integrity):
            raise ResourceHashMismatch(
                anchor.bootstrap_url, anchor.bootstrap_integrity, sri_string(bootstrap)
            )
        return cls(anchor, transport, extract_embedded_public_key(bootstrap), renderer, max_workers)

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    def run(self, cancel: Optional[threading.Event] = None) -> LoadResult:
        result = LoadResult(state=BootState.INIT)
        self._enter(result, BootState.INIT)
        try:
            self._enter(result, BootState.MANIFEST_FETCHING, cancel)
            raw = self._fetch_manifest()

            self._enter(result, BootState.MANIFEST_VERIFYING, cancel)
            manifest = loads_manifest(raw)
            result.authenticated = self._verify_signature(manifest)

            if self.anchor.is_locked:
                self._enter(result, BootState.LOCKED_PIN_CHECK, cancel)
                self._check_pin(manifest)

            self._enter(result, BootState.RESOURCES_FETCHING, cancel)
            resources = self.checker.verify_all(manifest, cancel)

            self._enter(result, BootState.RESOURCES_VERIFYING, cancel)
            self._check_complete(manifest, resources)

            self._enter(result, BootState.RENDERING, cancel)
            self._render(resources, manifest)
        except MarkproofError as err:
            logger.error("Load failed in state %s: %s", result.state.value, err)
            result.error = err
            result.resources = {}
            self._enter(result, BootState.FAILED)
            return result

        result.manifest = manifest
        result.resources = resources
        self._enter(result, BootState.DONE)
        return result

    def _enter(
        self,
        result: LoadResult,
        state: BootState,
        cancel: Optional[threading.Event] = None,
    ) -> None:
        if cancel is not None and cancel.is_set():
            raise LoadCancelled(f"before {state.value}")
        result.state = state
        result.history.append(state)
        logger.debug("bootstrap -> %s", state.value)

    def _fetch_manifest(self) -> bytes:
        url = self.anchor.manifest_url
        try:
            return self.transport.fetch(url)
        except FetchError as exc:
            raise ManifestUnreachable(f"{url}: {exc.reason}") from exc

    def _verify_signature(self, manifest: Manifest) -> bool:
        if self.public_key is None:
            logger.warning(UNSIGNED_WARNING)
            return False
        verify_manifest(manifest, self.public_key)
        logger.info(
            "Manifest %s verified with key %s", manifest.version, key_fingerprint(self.public_key)
        )
        return True

    def _check_pin(self, manifest: Manifest) -> None:
        expected = self.anchor.manifest_digest_hex or ""
        got = manifest_digest_hex(manifest)
        if not hmac.compare_digest(got, expected):
            raise ManifestPinMismatch(expected, got)

    def _check_complete(self, manifest: Manifest, resources: Dict[str, bytes]) -> None:
        missing = sorted(set(manifest.resources) - set(resources))
        if missing:
            raise ResourceMissing(missing[0], "resource set incomplete after verification")
        extra = sorted(set(resources) - set(manifest.resources))
        if extra:
            raise ResourceHashMismatch(extra[0], "<unlisted>", "resource not listed in manifest")

    def _render(self, resources: Dict[str, bytes], manifest: Manifest) -> None:
        if self.renderer is None:
            return
        try:
            self.renderer.render(dict(resources), manifest)
        except MarkproofError:
            raise
        except Exception as exc:
            raise RenderError(f"{type(exc).__name__}: {exc}") from exc
