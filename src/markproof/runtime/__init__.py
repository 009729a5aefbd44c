"""
runtime — browser-side templates shipped with markproof

  bootstrap.js    verifier runtime; the build substitutes the public key
  bookmarklet.js  installable loader; the trust anchor fills in its fields
"""

from __future__ import annotations
import json
import re
from pathlib import Path
from typing import Any, Mapping, Optional

RUNTIME_DIR = Path(__file__).resolve().parent

PUBLIC_KEY_PLACEHOLDER = "'__PUBLIC_KEY__'"

_EMBEDDED_KEY_RE = re.compile(r"var EMBEDDED_PUBLIC_KEY = (['\"])([^'\"]*)\1;")


def load_template(name: str) -> str:
    """Read a runtime template shipped with the package."""
    return (RUNTIME_DIR / name).read_text(encoding="utf-8")


def render_bootstrap(public_key_b64: Optional[str], template: Optional[str] = None) -> bytes:
    """
    Produce the deployable bootstrap bytes.

    With a key, the placeholder must occur exactly once and is replaced by
    the JSON string literal of the key. Without a key the template is left
    as-is and the runtime treats the build as unsigned.
    """
    source = template if template is not None else load_template("bootstrap.js")
    if public_key_b64:
        count = source.count(PUBLIC_KEY_PLACEHOLDER)
        if count != 1:
            raise ValueError(
                f"bootstrap template must contain {PUBLIC_KEY_PLACEHOLDER} exactly once, found {count}"
            )
        source = source.replace(PUBLIC_KEY_PLACEHOLDER, json.dumps(public_key_b64))
    return source.encode("utf-8")


def extract_embedded_public_key(bootstrap: bytes) -> Optional[str]:
    """
    Read the public key constant back out of deployed bootstrap bytes.
    Returns None for an unsigned bootstrap (placeholder still present).
    """
    match = _EMBEDDED_KEY_RE.search(bootstrap.decode("utf-8", errors="replace"))
    if match is None:
        return None
    value = match.group(2)
    if not value or value.startswith("__"):
        return None
    return value


def _js_string(value: str) -> str:
    # JSON string literal that is also safe inside an inline <script>.
    return json.dumps(value).replace("<", "\\u003c").replace(">", "\\u003e")


def render_bookmarklet(config: Mapping[str, Any], bootstrap_url: str, integrity: str) -> str:
    """Fill the bookmarklet template and return a ``javascript:`` URL."""
    source = load_template("bookmarklet.js")
    replacements = {
        "'__CONFIG_JSON__'": _js_string(json.dumps(dict(config), sort_keys=True, separators=(",", ":"))),
        "'__BOOTSTRAP_URL__'": _js_string(bootstrap_url),
        "'__INTEGRITY__'": _js_string(integrity),
    }
    for placeholder, value in replacements.items():
        source = source.replace(placeholder, value)
    return "javascript:" + minify_js(source)


def minify_js(source: str) -> str:
    """
    Deterministic whitespace minifier for the bookmarklet template.
    Drops full-line '//' comments and joins the remaining lines.
    """
    lines = []
    for line in source.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("//"):
            continue
        lines.append(stripped)
    return " ".join(lines)
