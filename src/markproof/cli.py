#!/usr/bin/env python3
"""
cli.py — Unified CLI for markproof

Commands:
  build     Bundle, sign and publish an app with its bootstrap and trust anchor
  keygen    Generate an Ed25519 signing keypair
  anchor    Assemble a trust anchor (and bookmarklet) for an existing build
  verify    Run the bootstrap verification state machine against a deployment
  digest    Print the canonical digest of a manifest (the locked-mode pin)
"""

from __future__ import annotations
import argparse
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional, Tuple, Union

from .anchor import UPDATE_MODES, assemble_trust_anchor, load_trust_anchor
from .bootstrap import BootstrapVerifier, DirectoryRenderer
from .builder import build_app
from .config import InstallerConfig, build_config_from_options, load_build_config, read_key_file
from .errors import BuildStepFailed, MarkproofError
from .integrity import BOOTSTRAP_FILENAME, MANIFEST_FILENAME, sri_digest_b64
from .manifest import canonical_manifest_bytes, loads_manifest, manifest_digest_hex
from .signing import KeyMaterial
from .transport import DirectoryTransport, UrlTransport

logger = logging.getLogger("markproof")

# Exit codes for `verify`: integrity failures must be distinguishable from
# mere unavailability.
EXIT_OK = 0
EXIT_ERROR = 1
EXIT_INTEGRITY = 2
EXIT_NETWORK = 3


def _fail_with_error(err: MarkproofError, code: int = EXIT_ERROR) -> None:
    """Print a structured error message from a ``MarkproofError`` to stderr and exit.

    Args:
        err: Structured protocol/runtime error.
        code: Process exit status.

    Returns:
        None: This function terminates the process.
    """
    context = f" Context: {err.context}." if err.context else ""
    print(
        f"ERROR: {err.code}. {err.message}{context} (See: {err.doc_url})",
        file=sys.stderr,
    )
    sys.exit(code)


def _cli_error(what: str, why: str, fix: str) -> None:
    """Print a teaching-style CLI error to stderr and exit 1.

    Args:
        what: What failed.
        why: Why it failed.
        fix: Recommended remediation.
    """
    print(f"ERROR: {what}. {why}. Fix: {fix}.", file=sys.stderr)
    sys.exit(EXIT_ERROR)


def _parse_static(values: Optional[List[str]]) -> List[Union[str, Tuple[str, str]]]:
    """``path`` or ``path:dest`` -> bundler static file entries."""
    out: List[Union[str, Tuple[str, str]]] = []
    for value in values or []:
        src, sep, dest = value.partition(":")
        out.append((src, dest) if sep and dest else src)
    return out


def cmd_build(args: argparse.Namespace) -> None:
    """Handle ``markproof build``.

    Args:
        args: Parsed CLI arguments with entrypoints, output and key options.
    """
    try:
        private_key = read_key_file(Path(args.private_key_file)) if args.private_key_file else None
    except (OSError, ValueError) as exc:
        _cli_error(
            "Cannot read the private key file",
            str(exc),
            "pass a readable PEM or base64 Ed25519 key with --private-key-file",
        )
        return

    overrides = dict(
        entrypoints=[str(e) for e in args.entrypoints] or None,
        static_files=_parse_static(args.static) or None,
        outdir=Path(args.outdir) if args.outdir else None,
        origin_url=args.origin,
        version=args.app_version,
        app_name=args.app_name,
        private_key=private_key,
        public_key=args.public_key,
        update_mode=args.update_mode,
        require_signature=True if args.require_signature else None,
        installer=InstallerConfig(template=Path(args.installer_template)) if args.installer_template else None,
        timestamp=args.timestamp,
    )

    try:
        if args.config:
            config = load_build_config(Path(args.config), **overrides)
        else:
            if not args.outdir or not args.origin:
                _cli_error(
                    "Missing build target",
                    "--outdir and --origin are required without --config",
                    "pass both flags or a config file",
                )
                return
            config = build_config_from_options(**overrides)
    except (OSError, ValueError, TypeError) as exc:
        _cli_error("Invalid build configuration", str(exc), "check the config file and flags")
        return

    try:
        result = build_app(config)
    except BuildStepFailed as err:
        print(f"ERROR: build step '{err.step}' failed. {err.context}", file=sys.stderr)
        sys.exit(EXIT_ERROR)

    print(f"manifest_version: {result.manifest.version}")
    print(f"signed: {'yes' if result.signed else 'NO (unsigned development build)'}")
    print(f"resources: {len(result.manifest.resources)}")
    print(f"bootstrap_digest_b64: {result.bootstrap_digest_b64}")
    print(f"manifest_digest_hex: {result.manifest_digest_hex}")
    print(f"update_mode: {result.trust_anchor.update_mode}")
    print(f"output: {config.outdir}")


def cmd_keygen(args: argparse.Namespace) -> None:
    """Handle ``markproof keygen``.

    Writes the private key only to ``--out`` (mode 0600) when given, so it
    does not end up in shell history or CI logs by accident.
    """
    keys = KeyMaterial.generate()
    if args.out:
        out = Path(args.out)
        if out.exists() and not args.force:
            _cli_error(
                "Refusing to overwrite an existing key file",
                f"{out} already exists",
                "choose another --out path or pass --force",
            )
            return
        out.write_text(keys.private_key_pem(), encoding="utf-8")
        out.chmod(0o600)
        print(f"Private key written to: {out}")
    else:
        print(keys.private_key_pem(), end="")

    print(f"public_key_b64: {keys.public_key_b64}")
    print(f"fingerprint: {keys.fingerprint}")
    print("IMPORTANT: Keep the private key offline. Anyone holding it can ship code to every user.")


def cmd_anchor(args: argparse.Namespace) -> None:
    """Handle ``markproof anchor``: build an installation's trust anchor from a build dir."""
    build_dir = Path(args.dir)
    try:
        bootstrap = (build_dir / BOOTSTRAP_FILENAME).read_bytes()
        manifest = loads_manifest((build_dir / MANIFEST_FILENAME).read_bytes())
        anchor = assemble_trust_anchor(
            args.origin,
            sri_digest_b64(bootstrap),
            update_mode=args.update_mode,
            manifest_digest_hex=manifest_digest_hex(manifest),
        )
    except OSError as exc:
        _cli_error("Cannot read the build", str(exc), "point --dir at a markproof build output")
        return
    except MarkproofError as err:
        _fail_with_error(err)
        return

    doc = anchor.to_dict()
    if args.out:
        Path(args.out).write_text(json.dumps(doc, indent=2, sort_keys=True) + "\n", encoding="utf-8")
        print(f"Trust anchor written to: {args.out}")
    else:
        print(json.dumps(doc, indent=2, sort_keys=True))
    if args.bookmarklet:
        print(anchor.to_bookmarklet())


def cmd_verify(args: argparse.Namespace) -> None:
    """Handle ``markproof verify``: one full run of the bootstrap state machine."""
    try:
        anchor = load_trust_anchor(Path(args.anchor))
    except OSError as exc:
        _cli_error("Cannot read the trust anchor", str(exc), "pass the trust_anchor.json of an installation")
        return
    except MarkproofError as err:
        _fail_with_error(err)
        return

    if args.dir:
        transport = DirectoryTransport(Path(args.dir), anchor.content_base_url)
    else:
        transport = UrlTransport(timeout=args.timeout)
    renderer = DirectoryRenderer(Path(args.extract)) if args.extract else None

    try:
        if args.public_key:
            verifier = BootstrapVerifier(anchor, transport, args.public_key, renderer)
        elif args.bootstrap:
            data = Path(args.bootstrap).read_bytes()
            verifier = BootstrapVerifier.from_bootstrap(anchor, transport, data, renderer)
        else:
            verifier = BootstrapVerifier.from_anchor(anchor, transport, renderer)
    except OSError as exc:
        _cli_error("Cannot read the bootstrap file", str(exc), "pass the bootstrap.js the anchor pins")
        return
    except MarkproofError as err:
        _fail_with_error(err, _exit_code_for(err.failure_class))
        return

    result = verifier.run()
    print("states: " + " -> ".join(s.value for s in result.history))
    if not result.ok:
        err = result.error
        if result.failure_class == "integrity":
            print("SECURITY: verification failed; content may have been tampered with.", file=sys.stderr)
        _fail_with_error(err, _exit_code_for(result.failure_class))
        return

    if not result.authenticated:
        print("WARNING: loaded WITHOUT signature verification (no key embedded).", file=sys.stderr)
    print(f"PASS: manifest {result.manifest.version}, {len(result.resources)} resource(s) verified.")


def _exit_code_for(failure_class: Optional[str]) -> int:
    if failure_class == "integrity":
        return EXIT_INTEGRITY
    if failure_class == "network":
        return EXIT_NETWORK
    return EXIT_ERROR


def cmd_digest(args: argparse.Namespace) -> None:
    """Handle ``markproof digest``."""
    try:
        manifest = loads_manifest(Path(args.manifest).read_bytes())
    except OSError as exc:
        _cli_error("Cannot read the manifest", str(exc), "pass a path to manifest.json")
        return
    except MarkproofError as err:
        _fail_with_error(err)
        return
    if args.canonical:
        sys.stdout.write(canonical_manifest_bytes(manifest).decode("utf-8") + "\n")
    print(manifest_digest_hex(manifest))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="markproof",
        description="markproof: signed, integrity-pinned delivery for static web apps",
    )
    parser.add_argument("-v", "--verbose", action="count", default=0, help="More log output (repeatable)")
    sub = parser.add_subparsers(dest="command", required=True)

    # build
    p_build = sub.add_parser("build", help="Build, sign and publish an app")
    p_build.add_argument("entrypoints", nargs="*", help="Application files to publish")
    p_build.add_argument("--config", help="JSON build config file")
    p_build.add_argument("--outdir", help="Output directory")
    p_build.add_argument("--origin", help="Origin URL the app is served from")
    p_build.add_argument("--static", action="append", help="Static file, optionally SRC:DEST (repeatable)")
    p_build.add_argument("--version", dest="app_version", help="App version string")
    p_build.add_argument("--app-name", help="Display name")
    p_build.add_argument("--private-key-file", help="PEM or base64 Ed25519 private key file")
    p_build.add_argument("--public-key", help="Base64 public key (must match the private key)")
    p_build.add_argument("--update-mode", choices=UPDATE_MODES, help="Trust anchor update mode")
    p_build.add_argument("--require-signature", action="store_true", help="Fail if no signing key is configured")
    p_build.add_argument("--installer-template", help="Installer HTML template")
    p_build.add_argument("--timestamp", help="Fixed manifest timestamp (reproducible builds)")

    # keygen
    p_keygen = sub.add_parser("keygen", help="Generate an Ed25519 signing keypair")
    p_keygen.add_argument("--out", help="Write the private key PEM here instead of stdout")
    p_keygen.add_argument("--force", action="store_true", help="Overwrite --out if it exists")

    # anchor
    p_anchor = sub.add_parser("anchor", help="Assemble a trust anchor for a build")
    p_anchor.add_argument("dir", help="Build output directory")
    p_anchor.add_argument("--origin", required=True, help="Origin URL the build is served from")
    p_anchor.add_argument("--update-mode", choices=UPDATE_MODES, default="auto")
    p_anchor.add_argument("--out", help="Write the anchor JSON here")
    p_anchor.add_argument("--bookmarklet", action="store_true", help="Also print the bookmarklet URL")

    # verify
    p_verify = sub.add_parser("verify", help="Verify a deployment from a trust anchor")
    p_verify.add_argument("--anchor", required=True, help="trust_anchor.json")
    p_verify.add_argument("--dir", help="Serve the deployment from this local directory")
    key_source = p_verify.add_mutually_exclusive_group()
    key_source.add_argument("--public-key", help="Verification key (default: read from the pinned bootstrap)")
    key_source.add_argument("--bootstrap", help="Local copy of the pinned bootstrap.js to take the key from")
    p_verify.add_argument("--extract", help="Write verified resources to this directory")
    p_verify.add_argument("--timeout", type=float, default=10.0, help="Per-fetch timeout in seconds")

    # digest
    p_digest = sub.add_parser("digest", help="Print the canonical manifest digest")
    p_digest.add_argument("manifest", help="Path to manifest.json")
    p_digest.add_argument("--canonical", action="store_true", help="Also print the canonical form")

    return parser


COMMANDS = {
    "build": cmd_build,
    "keygen": cmd_keygen,
    "anchor": cmd_anchor,
    "verify": cmd_verify,
    "digest": cmd_digest,
}


def main(argv: Optional[List[str]] = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    level = logging.WARNING
    if args.verbose == 1:
        level = logging.INFO
    elif args.verbose >= 2:
        level = logging.DEBUG
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s", stream=sys.stderr)

    COMMANDS[args.command](args)


if __name__ == "__main__":
    main()
