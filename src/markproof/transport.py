"""
transport.py — markproof Delivery Transports

The delivery host is untrusted: a transport only moves bytes. Every byte it
returns is checked against a digest that came from somewhere trusted (the
trust anchor for the bootstrap, the verified manifest for resources).

Transports:
  - UrlTransport        HTTP(S) via urllib, per-fetch timeout
  - DirectoryTransport  serves a local build directory under a base URL
  - MappingTransport    in-memory url -> bytes (tests, embedding)
"""

from __future__ import annotations
import http.client
import logging
import threading
import urllib.error
import urllib.parse
import urllib.request
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Protocol

from .integrity import check_sri, is_safe_resource_path

logger = logging.getLogger(__name__)

# Per-fetch timeout in seconds. Timeouts surface as ManifestUnreachable /
# ResourceMissing in the state machine.
DEFAULT_FETCH_TIMEOUT = 10.0


class FetchError(Exception):
    """A delivery location could not produce the requested bytes."""

    def __init__(self, url: str, reason: str):
        self.url = url
        self.reason = reason
        super().__init__(f"{url}: {reason}")


class IntegrityPinError(FetchError):
    """Bytes were delivered but do not satisfy the declared SRI pin."""


class Transport(Protocol):
    def fetch(self, url: str, integrity: Optional[str] = None) -> bytes:
        """Return the bytes at ``url`` or raise FetchError.

        When ``integrity`` (an SRI string such as ``sha256-<b64>``) is given,
        the bytes must satisfy it or IntegrityPinError is raised.
        """
        ...


def join_url(base_url: str, path: str) -> str:
    """Join a content base URL and an absolute resource path."""
    return base_url.rstrip("/") + "/" + path.lstrip("/")


def _enforce_integrity(url: str, data: bytes, integrity: Optional[str]) -> bytes:
    if integrity is not None and not check_sri(data, integrity):
        raise IntegrityPinError(url, f"content does not match integrity pin {integrity}")
    return data


class UrlTransport:
    """Fetch over HTTP(S) with urllib."""

    def __init__(self, timeout: float = DEFAULT_FETCH_TIMEOUT, user_agent: str = "markproof/1.0"):
        self.timeout = timeout
        self.user_agent = user_agent

    def fetch(self, url: str, integrity: Optional[str] = None) -> bytes:
        try:
            # Mirror URLs come from the unsigned part of the manifest.
            scheme = urllib.parse.urlsplit(url).scheme.lower()
            if scheme not in ("http", "https"):
                raise FetchError(url, f"unsupported URL scheme {scheme!r}")
            req = urllib.request.Request(url, headers={"User-Agent": self.user_agent})
            with urllib.request.urlopen(req, timeout=self.timeout) as response:
                if response.status != 200:
                    raise FetchError(url, f"HTTP {response.status}")
                data = response.read()
        except urllib.error.HTTPError as exc:
            raise FetchError(url, f"HTTP {exc.code}") from exc
        except (urllib.error.URLError, TimeoutError, OSError) as exc:
            raise FetchError(url, str(getattr(exc, "reason", exc))) from exc
        except (ValueError, http.client.HTTPException) as exc:
            raise FetchError(url, f"{type(exc).__name__}: {exc}") from exc
        logger.debug("Fetched %s (%d bytes)", url, len(data))
        return _enforce_integrity(url, data, integrity)


class DirectoryTransport:
    """
    Serve files from a local directory as if it were hosted at ``base_url``.
    URLs outside ``base_url`` are unreachable.
    """

    def __init__(self, root: Path, base_url: str):
        self.root = Path(root).resolve()
        self.base_url = base_url.rstrip("/")

    def fetch(self, url: str, integrity: Optional[str] = None) -> bytes:
        prefix = self.base_url + "/"
        if not url.startswith(prefix):
            raise FetchError(url, f"outside served base {self.base_url}")
        rel = "/" + url[len(prefix):]
        if not is_safe_resource_path(rel):
            raise FetchError(url, "unsafe path")
        target = self.root / rel.lstrip("/")
        try:
            data = target.read_bytes()
        except OSError as exc:
            raise FetchError(url, f"not found ({exc.__class__.__name__})") from exc
        return _enforce_integrity(url, data, integrity)


class MappingTransport:
    """In-memory transport. Records every requested URL in ``requested``."""

    def __init__(self, contents: Optional[Mapping[str, bytes]] = None):
        self.contents: Dict[str, bytes] = dict(contents or {})
        self.requested: List[str] = []
        self._lock = threading.Lock()

    def fetch(self, url: str, integrity: Optional[str] = None) -> bytes:
        with self._lock:
            self.requested.append(url)
        if url not in self.contents:
            raise FetchError(url, "not found")
        return _enforce_integrity(url, self.contents[url], integrity)
