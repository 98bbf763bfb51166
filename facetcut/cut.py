"""
Cut executor.

Submits a planned batch to the target system as one atomic operation and
classifies the outcome.

    ┌──────────────────────┐     CutIntent      ┌──────────────────────┐
    │     CutExecutor      │ ─────────────────▶ │   ExecutionChannel   │
    │  empty batch: no-op  │                    │  submit / wait       │
    │  reverted: raise     │ ◀───────────────── │  (opaque transport)  │
    └──────────────────────┘  OperationReceipt  └──────────────────────┘

The executor never retries and never splits a batch: every Add, Replace and
Remove entry of a pass travels in exactly one submission. Errors raised by the
channel itself (timeouts, dropped connections) propagate unchanged.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Optional, Protocol, Sequence, Tuple, Union

from facetcut.core import EMPTY_PAYLOAD, ZERO_ADDRESS, is_address, is_zero_address
from facetcut.errors import ExecutionReverted
from facetcut.model import CutAction, FacetCutAction, validate_batch
from facetcut.observability import FacetLayer, get_logger

logger = get_logger("executor", FacetLayer.CUT)


# =============================================================================
# EXECUTION CHANNEL
# =============================================================================

@dataclass(frozen=True)
class CutIntent:
    """A cut batch plus the optional initialization call."""
    actions: Tuple[CutAction, ...]
    init_target: str = ZERO_ADDRESS
    init_payload: str = EMPTY_PAYLOAD


@dataclass(frozen=True)
class DeployIntent:
    """Deployment of a module; the channel assigns the address."""
    name: str
    constructor_args: Tuple[Any, ...] = ()
    encoded_args: str = EMPTY_PAYLOAD


Intent = Union[CutIntent, DeployIntent]


@dataclass(frozen=True)
class OperationHandle:
    """Returned by ``submit``; identifies the operation for ``wait``."""
    operation_id: str


@dataclass(frozen=True)
class OperationReceipt:
    """Terminal state of a submitted operation."""
    operation_id: str
    success: bool
    block_number: int = 0
    block_timestamp: int = 0
    contract_address: Optional[str] = None


class ExecutionChannel(Protocol):
    """
    Opaque submission/confirmation mechanism of the target system.

    ``wait`` blocks until the operation has ``confirmations`` confirmations
    and reports whether it succeeded. Transport failures are raised by the
    channel.
    """

    def submit(self, intent: Intent) -> OperationHandle:
        ...

    def wait(self, handle: OperationHandle, confirmations: int = 1) -> OperationReceipt:
        ...


# =============================================================================
# EXECUTOR
# =============================================================================

@dataclass(frozen=True)
class ExecutionResult:
    """Outcome of a successful (or skipped) cut."""
    submitted: bool
    operation_id: Optional[str] = None
    touched: FrozenSet[str] = field(default_factory=frozenset)
    actions: Tuple[CutAction, ...] = ()
    block_number: int = 0

    @classmethod
    def noop(cls) -> "ExecutionResult":
        return cls(submitted=False)

    @property
    def is_noop(self) -> bool:
        return not self.submitted

    def touches(self, address: str) -> bool:
        return address.lower() in self.touched

    def to_dict(self) -> Dict[str, Any]:
        return {
            "submitted": self.submitted,
            "operation_id": self.operation_id,
            "touched": sorted(self.touched),
            "actions": [a.to_dict() for a in self.actions],
            "block_number": self.block_number,
        }


class CutExecutor:
    """Applies cut batches through an execution channel."""

    def __init__(self, channel: ExecutionChannel, confirmations: int = 1):
        if confirmations < 1:
            raise ValueError("confirmations must be >= 1")
        self._channel = channel
        self.confirmations = confirmations

    def apply(
        self,
        actions: Sequence[CutAction],
        init_target: str = ZERO_ADDRESS,
        init_payload: str = EMPTY_PAYLOAD,
    ) -> ExecutionResult:
        """Submit ``actions`` as one batch and wait for its terminal state.

        Raises ExecutionReverted when the target rejects the batch.
        """
        if not actions:
            logger.info("no facets to add or replace")
            return ExecutionResult.noop()

        if not is_address(init_target):
            raise ValueError(f"malformed init target: {init_target!r}")
        validate_batch(actions)

        intent = CutIntent(tuple(actions), init_target, init_payload or EMPTY_PAYLOAD)
        handle = self._channel.submit(intent)
        logger.info(
            "diamond cut submitted",
            operation_id=handle.operation_id,
            actions=[a.action.name for a in actions],
            init=not is_zero_address(init_target),
        )

        receipt = self._channel.wait(handle, self.confirmations)
        if not receipt.success:
            logger.error(
                "diamond cut reverted",
                error_code=ExecutionReverted.error_code,
                operation_id=receipt.operation_id,
            )
            raise ExecutionReverted(receipt.operation_id)

        touched = frozenset(
            a.facet_address.lower() for a in actions if a.action != FacetCutAction.REMOVE
        )
        logger.info(
            "diamond cut confirmed",
            operation_id=receipt.operation_id,
            block_number=receipt.block_number,
            touched=sorted(touched),
        )
        return ExecutionResult(
            submitted=True,
            operation_id=receipt.operation_id,
            touched=touched,
            actions=tuple(actions),
            block_number=receipt.block_number,
        )
