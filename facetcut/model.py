"""Value types shared by the planner, the cut executor and the driver."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Dict, FrozenSet, Iterable, List, Sequence, Tuple

from facetcut.core import ZERO_ADDRESS, is_address, is_selector, is_zero_address
from facetcut.errors import InvalidCutAction


class FacetCutAction(IntEnum):
    """Cut action kinds, numbered as the diamond cut entry point encodes them."""
    ADD = 0
    REPLACE = 1
    REMOVE = 2


@dataclass(frozen=True)
class Facet:
    """
    A deployed module.

    Immutable once deployed: new code means a new address, never an in-place
    change. ``selectors`` is the catalog of the module's interface.
    """
    name: str
    address: str
    selectors: FrozenSet[str]
    source_version: str = ""

    def __post_init__(self):
        if not self.name:
            raise ValueError("facet name is required")
        if not is_address(self.address) or is_zero_address(self.address):
            raise ValueError(f"facet {self.name} needs a non-zero address, got {self.address!r}")
        bad = [s for s in self.selectors if not is_selector(s)]
        if bad:
            raise ValueError(f"facet {self.name} has malformed selectors: {sorted(bad)}")
        object.__setattr__(self, "selectors", frozenset(self.selectors))


@dataclass(frozen=True)
class CutAction:
    """One entry of a cut batch."""
    action: FacetCutAction
    facet_address: str
    selectors: Tuple[str, ...] = field(default_factory=tuple)

    def __post_init__(self):
        object.__setattr__(self, "action", FacetCutAction(self.action))
        object.__setattr__(self, "selectors", tuple(self.selectors))

        if not is_address(self.facet_address):
            raise InvalidCutAction(f"malformed facet address: {self.facet_address!r}")
        if self.action == FacetCutAction.REMOVE and not is_zero_address(self.facet_address):
            raise InvalidCutAction("remove actions must carry the zero address")
        if self.action != FacetCutAction.REMOVE and is_zero_address(self.facet_address):
            raise InvalidCutAction(f"{self.action.name.lower()} actions need a facet address")
        if not self.selectors:
            raise InvalidCutAction("cut action has no selectors")
        if len(set(self.selectors)) != len(self.selectors):
            raise InvalidCutAction("cut action repeats a selector")
        bad = [s for s in self.selectors if not is_selector(s)]
        if bad:
            raise InvalidCutAction(f"malformed selectors: {bad}")

    @classmethod
    def remove(cls, selectors: Iterable[str]) -> "CutAction":
        return cls(FacetCutAction.REMOVE, ZERO_ADDRESS, tuple(selectors))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "facetAddress": self.facet_address,
            "action": int(self.action),
            "functionSelectors": list(self.selectors),
        }

    def to_tuple(self) -> Tuple[str, int, List[str]]:
        """The ``(address,uint8,bytes4[])`` shape of the cut entry point."""
        return (self.facet_address, int(self.action), list(self.selectors))


def validate_batch(actions: Sequence[CutAction]) -> None:
    """A selector may appear in at most one action of a batch."""
    seen: Dict[str, int] = {}
    for i, a in enumerate(actions):
        for s in a.selectors:
            if s in seen:
                raise InvalidCutAction(f"selector {s} appears in actions {seen[s]} and {i}")
            seen[s] = i
