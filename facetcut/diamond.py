"""
In-memory diamond.

A reference target system that implements both :class:`DispatchTable` and
:class:`ExecutionChannel`. It applies cut batches all-or-nothing with the
standard diamond rules, so a batch containing one invalid entry leaves the
dispatch table untouched:

    Add      selector must be unassigned
    Replace  selector must be assigned, to a different facet
    Remove   selector must be assigned; facet address must be zero
    init     zero target requires empty payload; non-zero target must be deployed

Used by the test-suite and for dry runs; simulates the chain without network
calls, in the same spirit as a mock chain adapter.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from facetcut.core import EMPTY_PAYLOAD, ZERO_ADDRESS, is_zero_address, keccak256
from facetcut.cut import CutIntent, DeployIntent, Intent, OperationHandle, OperationReceipt
from facetcut.errors import LoupeUnavailable
from facetcut.model import FacetCutAction
from facetcut.selectors import selector_of

LOUPE_FACETS = selector_of("facets()")
LOUPE_FACET_ADDRESS = selector_of("facetAddress(bytes4)")
DIAMOND_CUT = selector_of("diamondCut((address,uint8,bytes4[])[],address,bytes)")


@dataclass
class _Operation:
    intent: Intent
    success: bool
    block_number: int
    block_timestamp: int
    contract_address: Optional[str] = None
    reason: str = ""


class InMemoryDiamond:
    """Dispatch table plus execution channel held in memory."""

    def __init__(
        self,
        cut_facet_address: Optional[str] = None,
        loupe_builtin: bool = True,
        genesis_timestamp: int = 1_700_000_000,
        block_time_seconds: int = 12,
    ):
        self._bindings: Dict[str, str] = {}
        self._operations: Dict[str, _Operation] = {}
        self._deployed: Dict[str, str] = {}
        self._nonce = 0
        self._block_number = 0
        self._timestamp = genesis_timestamp
        self._block_time = block_time_seconds
        self._loupe_builtin = loupe_builtin
        self._revert_next = False
        self.transport_error: Optional[BaseException] = None
        self.submissions: List[Intent] = []
        self.init_calls: List[Tuple[str, str]] = []
        self.confirmations_requested: List[int] = []

        if cut_facet_address:
            self._bindings[DIAMOND_CUT] = cut_facet_address.lower()

    # ------------------------------------------------------------------
    # DispatchTable
    # ------------------------------------------------------------------

    def facet_address(self, selector: str) -> str:
        self._require_loupe(LOUPE_FACET_ADDRESS)
        return self._bindings.get(selector, ZERO_ADDRESS)

    def facets(self) -> List[Tuple[str, List[str]]]:
        self._require_loupe(LOUPE_FACETS)
        grouped: Dict[str, List[str]] = {}
        for selector, address in self._bindings.items():
            grouped.setdefault(address, []).append(selector)
        return [(address, sorted(sels)) for address, sels in sorted(grouped.items())]

    def _require_loupe(self, selector: str) -> None:
        if not self._loupe_builtin and selector not in self._bindings:
            raise LoupeUnavailable(f"loupe function {selector} is not cut into the diamond")

    # ------------------------------------------------------------------
    # ExecutionChannel
    # ------------------------------------------------------------------

    def submit(self, intent: Intent) -> OperationHandle:
        self.submissions.append(intent)
        self._nonce += 1
        self._block_number += 1
        self._timestamp += self._block_time
        operation_id = "0x" + keccak256(f"operation-{self._nonce}".encode()).hex()

        if isinstance(intent, DeployIntent):
            address = "0x" + keccak256(f"{intent.name}-{self._nonce}".encode())[-20:].hex()
            self._deployed[address] = intent.name
            op = _Operation(intent, True, self._block_number, self._timestamp, contract_address=address)
        elif isinstance(intent, CutIntent):
            ok, reason = self._execute_cut(intent)
            op = _Operation(intent, ok, self._block_number, self._timestamp, reason=reason)
        else:
            raise TypeError(f"unsupported intent: {type(intent).__name__}")

        self._operations[operation_id] = op
        return OperationHandle(operation_id)

    def wait(self, handle: OperationHandle, confirmations: int = 1) -> OperationReceipt:
        self.confirmations_requested.append(confirmations)
        if self.transport_error is not None:
            raise self.transport_error
        op = self._operations.get(handle.operation_id)
        if op is None:
            raise LookupError(f"unknown operation {handle.operation_id}")
        return OperationReceipt(
            operation_id=handle.operation_id,
            success=op.success,
            block_number=op.block_number,
            block_timestamp=op.block_timestamp,
            contract_address=op.contract_address,
        )

    # ------------------------------------------------------------------
    # Cut semantics
    # ------------------------------------------------------------------

    def _execute_cut(self, intent: CutIntent) -> Tuple[bool, str]:
        if self._revert_next:
            self._revert_next = False
            return False, "forced revert"

        staged = dict(self._bindings)
        for action in intent.actions:
            target = action.facet_address.lower()
            for selector in action.selectors:
                current = staged.get(selector)
                if action.action == FacetCutAction.ADD:
                    if current is not None:
                        return False, f"can't add function that already exists: {selector}"
                    staged[selector] = target
                elif action.action == FacetCutAction.REPLACE:
                    if current is None:
                        return False, f"can't replace function that doesn't exist: {selector}"
                    if current == target:
                        return False, f"can't replace function with same function: {selector}"
                    staged[selector] = target
                else:
                    if not is_zero_address(action.facet_address):
                        return False, "remove facet address must be address(0)"
                    if current is None:
                        return False, f"can't remove function that doesn't exist: {selector}"
                    del staged[selector]

        if is_zero_address(intent.init_target):
            if intent.init_payload not in ("", EMPTY_PAYLOAD):
                return False, "init is address(0) but calldata is not empty"
        elif intent.init_target.lower() not in self._deployed:
            return False, "init address has no code"

        self._bindings = staged
        if not is_zero_address(intent.init_target):
            self.init_calls.append((intent.init_target.lower(), intent.init_payload))
        return True, ""

    # ------------------------------------------------------------------
    # Test helpers
    # ------------------------------------------------------------------

    def revert_next(self) -> None:
        """Make the next cut revert regardless of its content."""
        self._revert_next = True

    def bind(self, selector: str, address: str) -> None:
        """Seed a binding directly, bypassing the cut rules."""
        self._bindings[selector] = address.lower()

    def revert_reason(self, operation_id: str) -> str:
        return self._operations[operation_id].reason

    def deployed_name(self, address: str) -> Optional[str]:
        return self._deployed.get(address.lower())

    @property
    def bindings(self) -> Dict[str, str]:
        return dict(self._bindings)

    def state_bytes(self) -> bytes:
        """Canonical bytes of the dispatch table, for equality checks."""
        return json.dumps(self._bindings, sort_keys=True, separators=(",", ":")).encode("utf-8")
