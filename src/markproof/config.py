"""
config.py — markproof Build Configuration

Everything the build pipeline needs is passed explicitly in a BuildConfig.
Nothing is read from the working directory or the environment inside the
pipeline; the CLI is the only place that resolves files and flags into a
config.

Config file (JSON), all keys optional except where the CLI does not supply
them:

    {
      "entrypoints": ["src/app.js"],
      "static_files": ["static/app.html", {"src": "static/s.css", "dest": "style.css"}],
      "outdir": "dist",
      "origin_url": "https://app.example.com",
      "version": "1.2.0",
      "app_name": "Example",
      "private_key_file": "keys/signing.pem",
      "public_key": "<base64 SPKI>",
      "update_mode": "auto",
      "require_signature": true,
      "mirrors": {"/app.js": ["https://cdn.example.net/app.js"]},
      "bootstrap_template": "runtime/bootstrap.js",
      "installer": {"template": "installer.html"}
    }

Relative paths resolve against the config file's directory.
"""

from __future__ import annotations
import json
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from .anchor import UPDATE_MODES

StaticFile = Union[str, Tuple[str, str]]


@dataclass(frozen=True)
class InstallerConfig:
    template: Path


@dataclass(frozen=True)
class BuildConfig:
    entrypoints: List[str]
    outdir: Path
    origin_url: str
    static_files: List[StaticFile] = field(default_factory=list)
    version: str = "1.0.0"
    app_name: str = "App"
    private_key: Optional[str] = None
    public_key: Optional[str] = None
    update_mode: str = "auto"
    require_signature: bool = False
    mirrors: Dict[str, List[str]] = field(default_factory=dict)
    bootstrap_template: Optional[Path] = None
    installer: Optional[InstallerConfig] = None
    timestamp: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.entrypoints and not self.static_files:
            raise ValueError("build needs at least one entrypoint or static file")
        if not self.origin_url.startswith(("https://", "http://")):
            raise ValueError(f"origin_url must be an http(s) URL: {self.origin_url!r}")
        if self.update_mode not in UPDATE_MODES:
            raise ValueError(f"update_mode must be one of {UPDATE_MODES}, got {self.update_mode!r}")
        if not self.version:
            raise ValueError("version must be non-empty")

    def __repr__(self) -> str:
        # Keep key material out of logs and tracebacks.
        shown = {f.name: getattr(self, f.name) for f in fields(self)}
        if shown["private_key"] is not None:
            shown["private_key"] = "<redacted>"
        inner = ", ".join(f"{k}={v!r}" for k, v in shown.items())
        return f"BuildConfig({inner})"


def _resolve(base: Path, value: str) -> str:
    p = Path(value)
    return str(p if p.is_absolute() else (base / p))


def _static_entry(base: Path, entry: Any) -> StaticFile:
    if isinstance(entry, str):
        return _resolve(base, entry)
    if isinstance(entry, Mapping) and "src" in entry and "dest" in entry:
        return (_resolve(base, entry["src"]), str(entry["dest"]))
    raise ValueError(f"static_files entries must be a path or {{src, dest}}: {entry!r}")


def _apply_overrides(values: Dict[str, Any], overrides: Mapping[str, Any]) -> None:
    # Unset flags arrive as None or [] and never clear a file value.
    for key, value in overrides.items():
        if value is not None and value != []:
            values[key] = value


def build_config_from_options(**options: Any) -> BuildConfig:
    """BuildConfig from CLI flags alone, with the same None handling as a config file."""
    values: Dict[str, Any] = {"entrypoints": []}
    _apply_overrides(values, options)
    return BuildConfig(**values)


def load_build_config(path: Path, **overrides: Any) -> BuildConfig:
    """
    Load a BuildConfig from a JSON file, then apply non-None overrides
    (CLI flags win over the file).
    """
    path = Path(path)
    base = path.resolve().parent
    data = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ValueError(f"{path}: config must be a JSON object")

    values: Dict[str, Any] = {
        "entrypoints": [_resolve(base, e) for e in data.get("entrypoints", [])],
        "static_files": [_static_entry(base, e) for e in data.get("static_files", [])],
        "outdir": Path(_resolve(base, data["outdir"])) if "outdir" in data else None,
        "origin_url": data.get("origin_url"),
        "version": data.get("version"),
        "app_name": data.get("app_name"),
        "public_key": data.get("public_key"),
        "update_mode": data.get("update_mode"),
        "require_signature": data.get("require_signature"),
        "mirrors": data.get("mirrors"),
        "timestamp": data.get("timestamp"),
    }
    if "private_key_file" in data:
        values["private_key"] = read_key_file(Path(_resolve(base, data["private_key_file"])))
    if "bootstrap_template" in data:
        values["bootstrap_template"] = Path(_resolve(base, data["bootstrap_template"]))
    if "installer" in data:
        values["installer"] = InstallerConfig(template=Path(_resolve(base, data["installer"]["template"])))

    _apply_overrides(values, overrides)

    if values.get("outdir") is None or values.get("origin_url") is None:
        raise ValueError(f"{path}: outdir and origin_url are required (in the file or as flags)")
    return BuildConfig(**{k: v for k, v in values.items() if v is not None})


def read_key_file(path: Path) -> str:
    """Read key material from an operator-controlled file."""
    text = Path(path).read_text(encoding="utf-8").strip()
    if not text:
        raise ValueError(f"key file is empty: {path}")
    return text
