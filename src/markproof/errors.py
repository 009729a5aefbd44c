"""
errors.py — markproof Error Taxonomy

Standardized error codes for the build and verification paths. Every
verification-path error is fail-closed: callers must never render content
once one of these has been raised.

Each error carries a ``failure_class`` so a UI can tell "integrity" failures
(possible active compromise) apart from "network" failures (mere
unavailability).
"""

from typing import Optional

__all__ = [
    "MarkproofError",
    "SignatureInvalid",
    "ManifestPinMismatch",
    "ResourceHashMismatch",
    "KeyFormatError",
    "ManifestMalformed",
    "TrustAnchorInvalid",
    "ManifestUnreachable",
    "ResourceMissing",
    "LoadCancelled",
    "RenderError",
    "BuildStepFailed",
]

class MarkproofError(Exception):
    """Base class for all markproof errors."""

    failure_class = "error"

    def __init__(
        self,
        code: str,
        message: str,
        context: Optional[str] = None,
    ):
        self.code = code
        self.message = message
        self.context = context

        full_msg = f"[{code}] {message}"
        if context:
            full_msg += f" Context: {context}"

        super().__init__(full_msg)

    @property
    def doc_url(self) -> str:
        """Link to the human-readable documentation for this error."""
        return f"https://markproof.dev/errors/{self.code}"

# Integrity Errors (E0xx)
class SignatureInvalid(MarkproofError):
    failure_class = "integrity"

    def __init__(self, context: Optional[str] = None):
        super().__init__("MARKPROOF_E001", "Ed25519 manifest signature verification failed.", context)

class ManifestPinMismatch(MarkproofError):
    failure_class = "integrity"

    def __init__(self, expected: str, got: str):
        self.expected = expected
        self.got = got
        super().__init__(
            "MARKPROOF_E002",
            "Locked mode: the canonical manifest digest does not equal the digest pinned in the trust anchor.",
            f"expected {expected}, got {got}",
        )

class ResourceHashMismatch(MarkproofError):
    failure_class = "integrity"

    def __init__(self, path: str, expected: str, got: str):
        self.path = path
        self.expected = expected
        self.got = got
        super().__init__(
            "MARKPROOF_E003",
            "A fetched resource does not match the digest listed in the verified manifest.",
            f"{path}: expected {expected}, got {got}",
        )

# Key Management Errors (E2xx)
class KeyFormatError(MarkproofError):
    failure_class = "malformed"

    def __init__(self, context: Optional[str] = None):
        super().__init__("MARKPROOF_E200", "Ed25519 key material could not be parsed.", context)

# Schema Errors (E3xx)
class ManifestMalformed(MarkproofError):
    failure_class = "malformed"

    def __init__(self, context: Optional[str] = None):
        super().__init__("MARKPROOF_E300", "The manifest is missing required fields or has the wrong shape.", context)

class TrustAnchorInvalid(MarkproofError):
    failure_class = "malformed"

    def __init__(self, context: Optional[str] = None):
        super().__init__("MARKPROOF_E301", "The trust anchor is missing required fields or is inconsistent.", context)

# Network Errors (E4xx)
class ManifestUnreachable(MarkproofError):
    failure_class = "network"

    def __init__(self, context: Optional[str] = None):
        super().__init__("MARKPROOF_E400", "The manifest could not be fetched from the delivery host.", context)

class ResourceMissing(MarkproofError):
    failure_class = "network"

    def __init__(self, path: str, context: Optional[str] = None):
        self.path = path
        super().__init__(
            "MARKPROOF_E401",
            f"Resource {path} could not be fetched from any delivery location.",
            context,
        )

class LoadCancelled(MarkproofError):
    failure_class = "cancelled"

    def __init__(self, context: Optional[str] = None):
        super().__init__("MARKPROOF_E402", "The load was cancelled before verification completed.", context)

# Runtime Errors (E5xx)
class RenderError(MarkproofError):
    failure_class = "render"

    def __init__(self, context: Optional[str] = None):
        super().__init__("MARKPROOF_E500", "Rendering the verified application failed.", context)

# Build Errors (E6xx)
class BuildStepFailed(MarkproofError):
    failure_class = "build"

    def __init__(self, step: str, cause: BaseException):
        self.step = step
        self.cause = cause
        super().__init__(
            "MARKPROOF_E600",
            f"Build step '{step}' failed; no artifacts were published.",
            f"{type(cause).__name__}: {cause}",
        )
