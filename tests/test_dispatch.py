"""Dispatch table reader tests."""

import pytest

from facetcut.core import ZERO_ADDRESS
from facetcut.diamond import InMemoryDiamond
from facetcut.dispatch import DispatchTableReader
from facetcut.errors import InconsistentDispatchState

from conftest import addr


class _StaticTable:
    """Dispatch table returning canned answers."""

    def __init__(self, bindings, facets=None):
        self._bindings = bindings
        self._facets = facets or []

    def facet_address(self, selector):
        return self._bindings.get(selector, ZERO_ADDRESS)

    def facets(self):
        return self._facets


class TestAddressFor:

    def test_unassigned_selector_is_none(self, diamond):
        assert DispatchTableReader(diamond).address_for("0xa9059cbb") is None

    def test_assigned_selector(self, diamond):
        diamond.bind("0xa9059cbb", addr(1))
        assert DispatchTableReader(diamond).address_for("0xa9059cbb") == addr(1)

    def test_malformed_selector(self, diamond):
        with pytest.raises(InconsistentDispatchState):
            DispatchTableReader(diamond).address_for("a9059cbb")

    def test_malformed_address_from_table(self):
        reader = DispatchTableReader(_StaticTable({"0xa9059cbb": "0x1234"}))
        with pytest.raises(InconsistentDispatchState, match="malformed address"):
            reader.address_for("0xa9059cbb")


class TestSnapshot:

    def test_snapshot_reads_each_selector_once(self, diamond):
        diamond.bind("0x8da5cb5b", addr(2))
        snap = DispatchTableReader(diamond).snapshot(["0x8da5cb5b", "0xf2fde38b", "0x8da5cb5b"])
        assert snap == {"0x8da5cb5b": addr(2), "0xf2fde38b": None}

    def test_empty_snapshot(self, diamond):
        assert DispatchTableReader(diamond).snapshot([]) == {}


class TestLoupe:

    def test_builtin_loupe_available(self, diamond):
        assert DispatchTableReader(diamond).loupe_available()

    def test_loupe_missing_on_fresh_diamond(self):
        assert not DispatchTableReader(InMemoryDiamond(loupe_builtin=False)).loupe_available()

    def test_facets_grouped_by_address(self, diamond):
        diamond.bind("0x8da5cb5b", addr(2))
        diamond.bind("0xf2fde38b", addr(2))
        diamond.bind("0xa9059cbb", addr(3))
        facets = DispatchTableReader(diamond).facets()
        assert facets == {
            addr(2): frozenset({"0x8da5cb5b", "0xf2fde38b"}),
            addr(3): frozenset({"0xa9059cbb"}),
        }

    def test_check_injective_passes_for_consistent_table(self, diamond):
        diamond.bind("0x8da5cb5b", addr(2))
        DispatchTableReader(diamond).check_injective()

    def test_check_injective_detects_double_binding(self):
        table = _StaticTable({}, facets=[
            (addr(2), ["0x8da5cb5b"]),
            (addr(3), ["0x8da5cb5b"]),
        ])
        with pytest.raises(InconsistentDispatchState) as exc:
            DispatchTableReader(table).check_injective()
        assert exc.value.selector == "0x8da5cb5b"
