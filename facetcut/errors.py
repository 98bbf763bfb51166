"""Error taxonomy for facet reconciliation and the deployment ledger.

Fatal errors unwind to the orchestration driver and abort the remaining
sequence. ``VerificationFailed`` is the only non-fatal kind: the driver logs it
and records ``verified: false`` instead of raising.
"""

from __future__ import annotations

from typing import Optional


class FacetCutError(Exception):
    """Base exception for facetcut failures."""

    error_code = "FACETCUT_ERROR"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ExecutionReverted(FacetCutError):
    """The target system rejected a submitted batch."""

    error_code = "EXECUTION_REVERTED"

    def __init__(self, operation_id: str, message: str = ""):
        self.operation_id = operation_id
        super().__init__(message or f"Diamond upgrade failed: {operation_id}")


class VersionTagMissing(FacetCutError):
    """A module's source does not carry the version marker."""

    error_code = "VERSION_TAG_MISSING"

    def __init__(self, source: str, marker: str):
        self.source = source
        self.marker = marker
        super().__init__(f"no '{marker}' tag found in {source}")


class LedgerCorrupt(FacetCutError):
    """A ledger file exists but cannot be parsed or fails its schema."""

    error_code = "LEDGER_CORRUPT"

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"ledger file {path} is unreadable: {reason}")


class InconsistentDispatchState(FacetCutError):
    """The live dispatch table disagrees with a planning assumption."""

    error_code = "INCONSISTENT_DISPATCH_STATE"

    def __init__(self, message: str, selector: Optional[str] = None):
        self.selector = selector
        super().__init__(message)


class InvalidCutAction(FacetCutError):
    """A cut action violates its address or selector invariants."""

    error_code = "INVALID_CUT_ACTION"


class VerificationFailed(FacetCutError):
    """Source verification did not succeed."""

    error_code = "VERIFICATION_FAILED"

    def __init__(self, module: str, address: str, reason: str = ""):
        self.module = module
        self.address = address
        self.reason = reason
        super().__init__(f"failed to verify {module} at {address}: {reason}".rstrip(": "))


class ConcurrentRunError(FacetCutError):
    """Another reconciliation pass holds the run lock for this target."""

    error_code = "CONCURRENT_RUN"


class LoupeUnavailable(FacetCutError):
    """The target's loupe operations are not yet cut into the dispatch table."""

    error_code = "LOUPE_UNAVAILABLE"
