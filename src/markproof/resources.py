"""
resources.py — markproof Resource Integrity Checker

Fetches every resource listed in a signature-verified manifest and checks it
against the manifest digest. The manifest entry is the only trust input:
the primary location and the `urls` mirrors are unauthenticated hints, tried
in order until one delivers matching bytes.

Only paths listed in the manifest are ever requested. A load succeeds only
when every listed resource verified; a partial set is a failure.
"""

from __future__ import annotations
import logging
import threading
from concurrent.futures import FIRST_EXCEPTION, Future, ThreadPoolExecutor, wait
from typing import Dict, List, Optional

from .errors import LoadCancelled, MarkproofError, ResourceHashMismatch, ResourceMissing
from .integrity import verify_resource
from .manifest import Manifest, ResourceEntry
from .transport import FetchError, Transport, join_url

logger = logging.getLogger(__name__)

DEFAULT_MAX_WORKERS = 4


class ResourceIntegrityChecker:
    def __init__(
        self,
        transport: Transport,
        base_url: str,
        max_workers: int = DEFAULT_MAX_WORKERS,
    ):
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        self.transport = transport
        self.base_url = base_url
        self.max_workers = max_workers

    def candidate_urls(self, path: str, entry: ResourceEntry) -> List[str]:
        """Primary location first, then mirrors, without duplicates."""
        seen: List[str] = []
        for url in [join_url(self.base_url, path), *entry.urls]:
            if url not in seen:
                seen.append(url)
        return seen

    def fetch_and_verify(
        self,
        path: str,
        entry: ResourceEntry,
        cancel: Optional[threading.Event] = None,
    ) -> bytes:
        """
        Return the verified bytes for one resource.

        Raises ResourceHashMismatch if some location answered but none with
        matching content, ResourceMissing if no location answered at all.
        """
        mismatch: Optional[ResourceHashMismatch] = None
        fetch_errors: List[str] = []

        for url in self.candidate_urls(path, entry):
            if cancel is not None and cancel.is_set():
                raise LoadCancelled(f"while fetching {path}")
            try:
                content = self.transport.fetch(url)
            except FetchError as exc:
                logger.info("Resource %s unavailable at %s: %s", path, url, exc.reason)
                fetch_errors.append(str(exc))
                continue

            # Size pre-check: a length mismatch can never hash-match.
            if len(content) != entry.size:
                logger.warning(
                    "Resource %s from %s has size %d, manifest says %d",
                    path, url, len(content), entry.size,
                )
                mismatch = ResourceHashMismatch(path, entry.hash, f"size-{len(content)}")
                continue
            try:
                verify_resource(content, entry.hash, path)
            except ResourceHashMismatch as exc:
                logger.warning("Resource %s from %s failed digest check: got %s", path, url, exc.got)
                mismatch = exc
                continue
            return content

        if mismatch is not None:
            raise mismatch
        raise ResourceMissing(path, "; ".join(fetch_errors) or "no delivery location")

    def verify_all(
        self,
        manifest: Manifest,
        cancel: Optional[threading.Event] = None,
    ) -> Dict[str, bytes]:
        """
        Fetch and verify every listed resource in parallel.

        The first failure cancels pending work and is raised; nothing is
        returned unless the whole set verified.
        """
        paths = sorted(manifest.resources)
        if not paths:
            return {}

        results: Dict[str, bytes] = {}
        stop = threading.Event()

        def _cancelled() -> bool:
            return stop.is_set() or (cancel is not None and cancel.is_set())

        def _one(path: str) -> bytes:
            if _cancelled():
                raise LoadCancelled(f"before fetching {path}")
            return self.fetch_and_verify(path, manifest.resources[path], cancel)

        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(paths))) as pool:
            futures: Dict[Future, str] = {pool.submit(_one, p): p for p in paths}
            done, pending = wait(futures, return_when=FIRST_EXCEPTION)
            failed = [f for f in done if f.exception() is not None]
            if failed:
                stop.set()
                for f in pending:
                    f.cancel()
                raise _first_failure(failed, futures)
            for f in done:
                results[futures[f]] = f.result()

        if cancel is not None and cancel.is_set():
            raise LoadCancelled("after resource verification")
        return results


def _first_failure(failed: List[Future], futures: Dict[Future, str]) -> BaseException:
    """Pick a deterministic error to report: real failures over cancellations, then by path."""
    ordered = sorted(failed, key=lambda f: futures[f])
    for f in ordered:
        exc = f.exception()
        if isinstance(exc, MarkproofError) and not isinstance(exc, LoadCancelled):
            return exc
    return ordered[0].exception()
