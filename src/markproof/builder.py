"""
builder.py — markproof Build Pipeline

Produces every cryptographic artifact in the order the verifier depends on:

  1. bundle             application files -> named resources
  2. derive_public_key  public key from the private key if not supplied
  3. bootstrap          substitute the key, THEN digest the final bytes
  4. hash_resources     {hash, size} for every resource (infrastructure excluded)
  5. manifest           sign the canonical form; re-verify the wire form
  6. manifest_digest    canonical digest for locked-mode anchors
  7. trust_anchor       assemble the installable anchor
  8. installer          optional installer page
  9. publish            move the staged artifact set into the output directory

Any failure raises BuildStepFailed naming the step. Artifacts are staged in
a temporary directory and nothing reaches the output directory unless every
generating step succeeded.
"""

from __future__ import annotations
import html
import json
import logging
import os
import shutil
import tempfile
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Protocol, Sequence

from .anchor import TrustAnchor, assemble_trust_anchor
from .canonical_json import canonical_bytes
from .config import BuildConfig, StaticFile
from .errors import BuildStepFailed
from .integrity import (
    BOOTSTRAP_FILENAME,
    INSTALLER_FILENAME,
    MANIFEST_EXCLUDE,
    MANIFEST_FILENAME,
    TRUST_ANCHOR_FILENAME,
    is_safe_resource_path,
    sri_digest_b64,
)
from .manifest import (
    Manifest,
    build_manifest,
    canonical_manifest_bytes,
    dumps_manifest,
    loads_manifest,
    manifest_digest_hex,
)
from .runtime import render_bootstrap
from .signing import KeyMaterial, derive_or_supply_keypair, sign_manifest, verify_manifest

logger = logging.getLogger(__name__)

UNSIGNED_BUILD_WARNING = (
    "UNSIGNED BUILD: no signing key configured. The bootstrap embeds no "
    "verification key and loads will run UNAUTHENTICATED. Do not deploy "
    "this build to users."
)


class Bundler(Protocol):
    def bundle(self, entrypoints: Sequence[str], static_files: Sequence[StaticFile]) -> Dict[str, bytes]:
        ...


class FileBundler:
    """
    Pass-through bundler: each entrypoint and static file becomes one
    resource named after its basename (or its explicit destination).
    Real bundling (transpiling, minifying) is left to an external tool
    whose output is fed in as static files.
    """

    def bundle(self, entrypoints: Sequence[str], static_files: Sequence[StaticFile]) -> Dict[str, bytes]:
        out: Dict[str, bytes] = {}
        items = [(str(e), Path(e).name) for e in entrypoints]
        for entry in static_files:
            if isinstance(entry, (tuple, list)):
                items.append((str(entry[0]), str(entry[1])))
            else:
                items.append((str(entry), Path(entry).name))

        for src, dest in items:
            path = "/" + dest.lstrip("/")
            if path in out:
                raise ValueError(f"two inputs map to the same resource path {path}")
            out[path] = Path(src).read_bytes()
            logger.debug("Bundled %s -> %s", src, path)
        return out


@dataclass
class BuildResult:
    manifest: Manifest
    manifest_digest_hex: str
    bootstrap_digest_b64: str
    trust_anchor: TrustAnchor
    public_key_b64: Optional[str]
    output_files: List[Path] = field(default_factory=list)

    @property
    def signed(self) -> bool:
        return self.manifest.is_signed


@contextmanager
def build_step(name: str) -> Iterator[None]:
    """Run one pipeline step; any failure aborts the build naming the step."""
    logger.debug("build step: %s", name)
    try:
        yield
    except BuildStepFailed:
        raise
    except Exception as exc:
        logger.error("Build step '%s' failed: %s", name, exc)
        raise BuildStepFailed(name, exc) from exc


def build_app(config: BuildConfig, bundler: Optional[Bundler] = None) -> BuildResult:
    """Run the full pipeline for ``config`` and publish to ``config.outdir``."""
    bundler = bundler or FileBundler()
    logger.info("Building %s v%s...", config.app_name, config.version)

    with build_step("bundle"):
        files = bundler.bundle(config.entrypoints, config.static_files)
        _check_resource_names(files)
        logger.info("  Bundled %d resource(s)", len(files))

    with build_step("derive_public_key"):
        keys = _resolve_keys(config)
        pub_b64 = keys.public_key_b64 if keys is not None else None

    with build_step("bootstrap"):
        template = (
            config.bootstrap_template.read_text(encoding="utf-8")
            if config.bootstrap_template is not None else None
        )
        bootstrap_bytes = render_bootstrap(pub_b64, template)
        bootstrap_digest = sri_digest_b64(bootstrap_bytes)
        logger.info("  Bootstrap digest (sha256, base64): %s", bootstrap_digest)

    with build_step("hash_resources"):
        manifest = build_manifest(
            files, config.version, timestamp=config.timestamp, mirrors=config.mirrors
        )

    with build_step("manifest"):
        if keys is not None and keys.can_sign:
            manifest = sign_manifest(manifest, keys.private_key)
            _verify_round_trip(manifest, keys)
            logger.info("  Manifest signed with key %s", keys.fingerprint)
        else:
            logger.warning(UNSIGNED_BUILD_WARNING)
        manifest_bytes = dumps_manifest(manifest)

    with build_step("manifest_digest"):
        digest_hex = manifest_digest_hex(manifest)

    with build_step("trust_anchor"):
        anchor = assemble_trust_anchor(
            config.origin_url,
            bootstrap_digest,
            update_mode=config.update_mode,
            manifest_digest_hex=digest_hex,
        )

    artifacts: Dict[str, bytes] = {path.lstrip("/"): data for path, data in files.items()}
    artifacts[BOOTSTRAP_FILENAME] = bootstrap_bytes
    artifacts[MANIFEST_FILENAME] = manifest_bytes
    artifacts[TRUST_ANCHOR_FILENAME] = canonical_bytes(anchor.to_dict()) + b"\n"

    if config.installer is not None:
        with build_step("installer"):
            artifacts[INSTALLER_FILENAME] = render_installer(
                config.installer.template.read_text(encoding="utf-8"),
                config, anchor, digest_hex,
            )

    with build_step("publish"):
        output_files = publish(artifacts, Path(config.outdir))

    logger.info("Build complete: %d files in %s", len(output_files), config.outdir)
    return BuildResult(
        manifest=manifest,
        manifest_digest_hex=digest_hex,
        bootstrap_digest_b64=bootstrap_digest,
        trust_anchor=anchor,
        public_key_b64=pub_b64,
        output_files=output_files,
    )


def _check_resource_names(files: Dict[str, bytes]) -> None:
    if not files:
        raise ValueError("bundler produced no resources")
    for path in files:
        if not is_safe_resource_path(path):
            raise ValueError(f"unsafe resource path {path!r}")
        if path.lstrip("/") in MANIFEST_EXCLUDE:
            raise ValueError(f"resource {path} collides with a markproof infrastructure file")


def _resolve_keys(config: BuildConfig) -> Optional[KeyMaterial]:
    keys = derive_or_supply_keypair(config.private_key, config.public_key)
    if keys is None:
        if config.require_signature:
            raise ValueError("require_signature is set but no private key was configured")
        return None
    if not keys.can_sign:
        # An embedded key with an unsigned manifest would fail every load.
        raise ValueError("a public key is configured without its private key; cannot sign the manifest")
    logger.info("  Public key %s embedded in bootstrap", keys.fingerprint)
    return keys


def _verify_round_trip(manifest: Manifest, keys: KeyMaterial) -> None:
    """Verify the manifest exactly as a loader will: from its wire bytes."""
    reparsed = loads_manifest(dumps_manifest(manifest))
    if canonical_manifest_bytes(reparsed) != canonical_manifest_bytes(manifest):
        raise ValueError("canonical form changed across serialization")
    verify_manifest(reparsed, keys.public_key)


def render_installer(template: str, config: BuildConfig, anchor: TrustAnchor, digest_hex: str) -> bytes:
    """
    Fill the installer page template. Placeholders:
    __APP_NAME__, __APP_VERSION__, __BOOKMARKLET_URL__, __DATA_URL__,
    __TRUST_ANCHOR_JSON__, __MANIFEST_DIGEST__.
    """
    values = {
        "__APP_NAME__": html.escape(config.app_name),
        "__APP_VERSION__": html.escape(config.version),
        "__BOOKMARKLET_URL__": html.escape(anchor.to_bookmarklet(), quote=True),
        "__DATA_URL__": html.escape(anchor.to_data_url(), quote=True),
        "__TRUST_ANCHOR_JSON__": html.escape(json.dumps(anchor.to_dict(), sort_keys=True)),
        "__MANIFEST_DIGEST__": digest_hex,
    }
    out = template
    for placeholder, value in values.items():
        out = out.replace(placeholder, value)
    return out.encode("utf-8")


def publish(artifacts: Dict[str, bytes], outdir: Path) -> List[Path]:
    """
    Stage the complete new ``outdir`` beside it, then swap it into place.

    Files already in ``outdir`` that the build does not produce are carried
    into the staged copy. Readers see either the old tree or the new one;
    if the swap fails the old tree is put back.
    """
    outdir = outdir.resolve()
    outdir.parent.mkdir(parents=True, exist_ok=True)
    staging = Path(tempfile.mkdtemp(prefix=".markproof-", dir=outdir.parent))
    previous = staging.with_name(staging.name + "-previous")
    try:
        replacing = outdir.is_dir() and any(outdir.iterdir())
        if replacing:
            shutil.copytree(outdir, staging, symlinks=True, dirs_exist_ok=True)
        for rel, data in artifacts.items():
            target = staging / rel
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)

        if not replacing:
            if outdir.exists():
                outdir.rmdir()
            os.replace(staging, outdir)
        else:
            os.replace(outdir, previous)
            try:
                os.replace(staging, outdir)
            except OSError:
                os.replace(previous, outdir)
                raise
    finally:
        for leftover in (staging, previous):
            if leftover.exists():
                shutil.rmtree(leftover, ignore_errors=True)

    return [outdir / rel for rel in sorted(artifacts)]
