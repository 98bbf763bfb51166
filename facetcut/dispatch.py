"""Dispatch table reader.

The dispatch table (selector -> facet address) is owned by the target system.
This module only reads it: one query per selector, batched once per planning
pass through :meth:`DispatchTableReader.snapshot`. Nothing here caches answers
across passes, because the table can change between planning and execution.
"""

from __future__ import annotations

from typing import Dict, FrozenSet, Iterable, List, Optional, Protocol, Tuple

from facetcut.core import is_address, is_selector, is_zero_address
from facetcut.errors import InconsistentDispatchState, LoupeUnavailable
from facetcut.observability import FacetLayer, get_logger

logger = get_logger("reader", FacetLayer.DISPATCH)


class DispatchTable(Protocol):
    """
    Read side of a live dispatch table (the loupe).

    ``facet_address`` returns the zero address for unassigned selectors.
    Both calls may raise :class:`LoupeUnavailable` before the loupe facet has
    been cut in.
    """

    def facet_address(self, selector: str) -> str:
        ...

    def facets(self) -> List[Tuple[str, List[str]]]:
        ...


class DispatchTableReader:
    """Thin synchronous query layer over a :class:`DispatchTable`."""

    def __init__(self, table: DispatchTable):
        self._table = table

    def address_for(self, selector: str) -> Optional[str]:
        """Facet address currently serving ``selector``; None when unassigned."""
        if not is_selector(selector):
            raise InconsistentDispatchState(f"malformed selector: {selector!r}", selector=selector)
        raw = self._table.facet_address(selector)
        if not is_address(raw):
            raise InconsistentDispatchState(
                f"dispatch table returned a malformed address for {selector}: {raw!r}",
                selector=selector,
            )
        if is_zero_address(raw):
            return None
        return raw

    def snapshot(self, selectors: Iterable[str]) -> Dict[str, Optional[str]]:
        """Read the binding of every selector once, before any planning."""
        out: Dict[str, Optional[str]] = {}
        for selector in sorted(set(selectors)):
            out[selector] = self.address_for(selector)
        logger.debug(
            "dispatch snapshot taken",
            selectors=len(out),
            assigned=sum(1 for v in out.values() if v is not None),
        )
        return out

    def loupe_available(self) -> bool:
        try:
            self._table.facets()
        except LoupeUnavailable:
            return False
        return True

    def facets(self) -> Dict[str, FrozenSet[str]]:
        """Facet address (lowercased) -> selectors, as reported by the loupe."""
        out: Dict[str, FrozenSet[str]] = {}
        for address, selectors in self._table.facets():
            if not is_address(address):
                raise InconsistentDispatchState(f"loupe returned a malformed address: {address!r}")
            out[address.lower()] = frozenset(selectors)
        return out

    def check_injective(self) -> None:
        """Raise if the loupe reports a selector under more than one facet."""
        seen: Dict[str, str] = {}
        for address, selectors in self.facets().items():
            for s in selectors:
                if s in seen and seen[s] != address:
                    raise InconsistentDispatchState(
                        f"selector {s} bound to both {seen[s]} and {address}", selector=s
                    )
                seen[s] = address
