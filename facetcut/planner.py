"""Reconciliation planner.

Given the facets that should be live and the current dispatch table, compute
the smallest cut batch that brings the table in line:

    unassigned selector               -> Add     (into the candidate)
    bound to a different address      -> Replace (into the candidate)
    bound to the candidate already    -> nothing

Per facet the Replace action (if any) is emitted before the Add action (if
any). All reads happen in one snapshot before the first action is built, so a
plan reflects a single view of the table. Running ``plan`` again after its own
batch was applied yields an empty list; idempotence lives here, not in the
executor.
"""

from __future__ import annotations

from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

from facetcut.core import same_address
from facetcut.dispatch import DispatchTableReader
from facetcut.errors import InconsistentDispatchState
from facetcut.model import CutAction, Facet, FacetCutAction, validate_batch
from facetcut.observability import FacetLayer, get_logger

logger = get_logger("planner", FacetLayer.PLANNER)


class ReconciliationPlanner:
    """Builds cut batches from desired facets and the observed dispatch table."""

    def __init__(self, reader: DispatchTableReader):
        self._reader = reader

    def plan(self, candidates: Sequence[Facet]) -> List[CutAction]:
        """Minimal Add/Replace batch for ``candidates``; empty when current."""
        _check_disjoint(candidates)

        bindings = self._reader.snapshot(s for f in candidates for s in f.selectors)

        actions: List[CutAction] = []
        for facet, selectors in _unclaimed(candidates):
            add: List[str] = []
            replace: List[str] = []
            for selector in selectors:
                current = bindings[selector]
                if current is None:
                    add.append(selector)
                elif not same_address(current, facet.address):
                    replace.append(selector)

            if replace:
                actions.append(CutAction(FacetCutAction.REPLACE, facet.address, tuple(replace)))
            if add:
                actions.append(CutAction(FacetCutAction.ADD, facet.address, tuple(add)))

            logger.debug(
                "facet reconciled",
                facet=facet.name,
                address=facet.address,
                add=len(add),
                replace=len(replace),
                current=len(selectors) - len(add) - len(replace),
            )

        validate_batch(actions)
        logger.info(
            "cut planned" if actions else "no facets to add or replace",
            facets=[f.name for f in candidates],
            actions=len(actions),
        )
        return actions

    def plan_removal(self, selectors: Iterable[str]) -> CutAction:
        """Exactly one Remove action for ``selectors``."""
        action = CutAction.remove(sorted(set(selectors)))
        logger.info("removal planned", selectors=list(action.selectors))
        return action

    def plan_add(self, candidates: Sequence[Facet]) -> List[CutAction]:
        """Unconditional Add of every catalogued selector.

        Used to bootstrap a table whose loupe is not yet readable, so it
        performs no reads.
        """
        _check_disjoint(candidates)
        actions = [
            CutAction(FacetCutAction.ADD, f.address, tuple(selectors))
            for f, selectors in _unclaimed(candidates)
            if selectors
        ]
        validate_batch(actions)
        return actions

    def plan_replace(self, facet: Facet) -> List[CutAction]:
        """Unconditional Replace of the facet's whole catalog."""
        if not facet.selectors:
            return []
        return [CutAction(FacetCutAction.REPLACE, facet.address, tuple(sorted(facet.selectors)))]


def _check_disjoint(candidates: Sequence[Facet]) -> None:
    """Two candidates claiming one selector would break injectivity."""
    owner: Dict[str, Facet] = {}
    for facet in candidates:
        for selector in facet.selectors:
            other: Optional[Facet] = owner.get(selector)
            if other is not None and not same_address(other.address, facet.address):
                raise InconsistentDispatchState(
                    f"selector {selector} is claimed by both {other.name} and {facet.name}",
                    selector=selector,
                )
            owner[selector] = facet


def _unclaimed(candidates: Sequence[Facet]) -> List[Tuple[Facet, List[str]]]:
    """Each candidate with the sorted selectors no earlier candidate at the same address claimed."""
    claimed: Set[Tuple[str, str]] = set()
    result: List[Tuple[Facet, List[str]]] = []
    for facet in candidates:
        selectors = []
        for selector in sorted(facet.selectors):
            key = (facet.address.lower(), selector)
            if key not in claimed:
                claimed.add(key)
                selectors.append(selector)
        result.append((facet, selectors))
    return result
