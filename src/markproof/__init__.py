"""markproof public API.

Signed, integrity-pinned delivery for static web applications served from
untrusted hosting. Stable top-level imports cover the build pipeline, the
manifest model and its canonical form, signing, and the bootstrap
verification state machine.

Example:
    from markproof import BuildConfig, build_app

    result = build_app(BuildConfig(
        entrypoints=["dist/app.js"],
        outdir=Path("public"),
        origin_url="https://app.example.com",
        private_key=Path("signing.pem").read_text(),
    ))
    print(result.trust_anchor.to_bookmarklet())
"""

from .anchor import TrustAnchor, assemble_trust_anchor, load_trust_anchor
from .bootstrap import BootState, BootstrapVerifier, DirectoryRenderer, LoadResult
from .builder import BuildResult, FileBundler, build_app
from .canonical_json import CanonicalEncodingError, canonical_bytes, canonical_dumps
from .config import BuildConfig, InstallerConfig, load_build_config
from .errors import (
    BuildStepFailed,
    KeyFormatError,
    LoadCancelled,
    ManifestMalformed,
    ManifestPinMismatch,
    ManifestUnreachable,
    MarkproofError,
    RenderError,
    ResourceHashMismatch,
    ResourceMissing,
    SignatureInvalid,
    TrustAnchorInvalid,
)
from .manifest import (
    Manifest,
    ResourceEntry,
    build_manifest,
    canonical_manifest,
    canonical_manifest_bytes,
    loads_manifest,
    manifest_digest_hex,
    parse_manifest,
)
from .resources import ResourceIntegrityChecker
from .signing import (
    KeyMaterial,
    derive_or_supply_keypair,
    load_private_key,
    load_public_key,
    sign_manifest,
    verify_manifest,
)
from .transport import DirectoryTransport, FetchError, MappingTransport, UrlTransport

__version__ = "1.0.0"
__all__ = [
    "TrustAnchor",
    "assemble_trust_anchor",
    "load_trust_anchor",
    "BootState",
    "BootstrapVerifier",
    "DirectoryRenderer",
    "LoadResult",
    "BuildResult",
    "FileBundler",
    "build_app",
    "canonical_bytes",
    "canonical_dumps",
    "CanonicalEncodingError",
    "BuildConfig",
    "InstallerConfig",
    "load_build_config",
    "BuildStepFailed",
    "KeyFormatError",
    "LoadCancelled",
    "ManifestMalformed",
    "ManifestPinMismatch",
    "ManifestUnreachable",
    "MarkproofError",
    "RenderError",
    "ResourceHashMismatch",
    "ResourceMissing",
    "SignatureInvalid",
    "TrustAnchorInvalid",
    "Manifest",
    "ResourceEntry",
    "build_manifest",
    "canonical_manifest",
    "canonical_manifest_bytes",
    "loads_manifest",
    "manifest_digest_hex",
    "parse_manifest",
    "ResourceIntegrityChecker",
    "KeyMaterial",
    "derive_or_supply_keypair",
    "load_private_key",
    "load_public_key",
    "sign_manifest",
    "verify_manifest",
    "DirectoryTransport",
    "FetchError",
    "MappingTransport",
    "UrlTransport",
]
