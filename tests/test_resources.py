"""
test_resources.py — resource fetch, mirror fallback and whole-set verification
"""

import threading

import pytest

from markproof.errors import LoadCancelled, ResourceHashMismatch, ResourceMissing
from markproof.manifest import build_manifest
from markproof.resources import ResourceIntegrityChecker
from markproof.transport import MappingTransport

from conftest import ORIGIN, FIXED_TIMESTAMP, deploy

MIRROR = "https://mirror.example.net/app.js"


def _checker(transport, workers=4):
    return ResourceIntegrityChecker(transport, ORIGIN, max_workers=workers)


def test_verifies_every_listed_resource(files, signed_manifest):
    transport = deploy(signed_manifest, files)
    assert _checker(transport).verify_all(signed_manifest) == files


def test_only_listed_resources_are_requested(files, signed_manifest):
    served = dict(files, **{"/extra.js": b"evil()"})
    transport = deploy(signed_manifest, served)
    result = _checker(transport).verify_all(signed_manifest)

    assert "/extra.js" not in result
    assert sorted(transport.requested) == sorted(ORIGIN + p for p in files)


def test_swapped_resource_rejected(files, signed_manifest):
    served = dict(files, **{"/app.js": b"console.log('pwned');"})
    with pytest.raises(ResourceHashMismatch) as exc:
        _checker(deploy(signed_manifest, served)).verify_all(signed_manifest)
    assert exc.value.path == "/app.js"


def test_same_size_swap_rejected_by_digest(files, signed_manifest):
    original = files["/style.css"]
    swapped = bytes(reversed(original))
    assert len(swapped) == len(original)
    served = dict(files, **{"/style.css": swapped})
    with pytest.raises(ResourceHashMismatch) as exc:
        _checker(deploy(signed_manifest, served)).verify_all(signed_manifest)
    assert exc.value.got.startswith("sha256-")


def test_size_mismatch_skips_hashing(files, signed_manifest):
    served = dict(files, **{"/app.js": files["/app.js"] + b" "})
    with pytest.raises(ResourceHashMismatch) as exc:
        _checker(deploy(signed_manifest, served)).verify_all(signed_manifest)
    assert exc.value.got == "size-%d" % (len(files["/app.js"]) + 1)


def test_missing_resource_is_network_failure(files, signed_manifest):
    served = {p: d for p, d in files.items() if p != "/style.css"}
    with pytest.raises(ResourceMissing) as exc:
        _checker(deploy(signed_manifest, served)).verify_all(signed_manifest)
    assert exc.value.path == "/style.css"
    assert exc.value.failure_class == "network"


def test_mirror_used_when_primary_unreachable(files):
    manifest = build_manifest(files, "1", timestamp=FIXED_TIMESTAMP, mirrors={"/app.js": [MIRROR]})
    served = {p: d for p, d in files.items() if p != "/app.js"}
    transport = deploy(manifest, served)
    transport.contents[MIRROR] = files["/app.js"]

    result = _checker(transport).verify_all(manifest)
    assert result["/app.js"] == files["/app.js"]
    assert MIRROR in transport.requested


def test_mirror_used_when_primary_tampered(files):
    manifest = build_manifest(files, "1", timestamp=FIXED_TIMESTAMP, mirrors={"/app.js": [MIRROR]})
    transport = deploy(manifest, dict(files, **{"/app.js": b"tampered"}))
    transport.contents[MIRROR] = files["/app.js"]

    assert _checker(transport).verify_all(manifest)["/app.js"] == files["/app.js"]


def test_all_candidates_bad_reports_mismatch_over_missing(files):
    manifest = build_manifest(files, "1", timestamp=FIXED_TIMESTAMP, mirrors={"/app.js": [MIRROR]})
    served = {p: d for p, d in files.items() if p != "/app.js"}
    transport = deploy(manifest, served)
    transport.contents[MIRROR] = b"tampered mirror"

    with pytest.raises(ResourceHashMismatch):
        _checker(transport).verify_all(manifest)


def test_candidate_urls_dedupe(files):
    manifest = build_manifest(
        files, "1", mirrors={"/app.js": [ORIGIN + "/app.js", MIRROR, MIRROR]}
    )
    urls = _checker(MappingTransport()).candidate_urls("/app.js", manifest.resources["/app.js"])
    assert urls == [ORIGIN + "/app.js", MIRROR]


def test_sequential_checker_reports_lowest_failing_path(files, signed_manifest):
    served = {"/style.css": b"bad", "/app.js": b"bad"}
    for _ in range(5):
        with pytest.raises(ResourceMissing) as exc:
            _checker(deploy(signed_manifest, served), workers=1).verify_all(signed_manifest)
        assert exc.value.path == "/app.html"


def test_any_failure_fails_the_whole_set(files, signed_manifest):
    served = {"/style.css": b"bad", "/app.js": b"bad"}
    with pytest.raises((ResourceMissing, ResourceHashMismatch)) as exc:
        _checker(deploy(signed_manifest, served)).verify_all(signed_manifest)
    assert exc.value.path in files


def test_cancel_before_start(files, signed_manifest):
    cancel = threading.Event()
    cancel.set()
    transport = deploy(signed_manifest, files)
    with pytest.raises(LoadCancelled):
        _checker(transport).verify_all(signed_manifest, cancel)
    assert transport.requested == []


def test_empty_manifest():
    manifest = build_manifest({}, "1")
    assert _checker(MappingTransport()).verify_all(manifest) == {}


def test_single_worker(files, signed_manifest):
    assert _checker(deploy(signed_manifest, files), workers=1).verify_all(signed_manifest) == files


def test_invalid_worker_count():
    with pytest.raises(ValueError):
        ResourceIntegrityChecker(MappingTransport(), ORIGIN, max_workers=0)
