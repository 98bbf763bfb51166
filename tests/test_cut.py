"""
Cut executor and cut action tests.

The in-memory diamond applies batches all-or-nothing, so atomicity is checked
by comparing the serialized dispatch table before and after a rejected batch.
"""

import pytest

from facetcut.core import ZERO_ADDRESS
from facetcut.cut import CutExecutor, DeployIntent, ExecutionResult
from facetcut.dispatch import DispatchTableReader
from facetcut.errors import ExecutionReverted, InvalidCutAction
from facetcut.model import CutAction, Facet, FacetCutAction
from facetcut.planner import ReconciliationPlanner

from conftest import OWNERSHIP_SIGNATURES, addr, make_facet

OWNER = "0x8da5cb5b"
TRANSFER_OWNERSHIP = "0xf2fde38b"
BALANCE_OF = "0x70a08231"


class _UnreachableChannel:
    def submit(self, intent):
        raise AssertionError("channel must not be contacted")

    def wait(self, handle, confirmations=1):
        raise AssertionError("channel must not be contacted")


def _deploy(diamond, name="DiamondInit"):
    handle = diamond.submit(DeployIntent(name))
    return diamond.wait(handle).contract_address


# =============================================================================
# EXECUTOR
# =============================================================================

class TestEmptyBatch:

    def test_empty_batch_never_reaches_channel(self):
        result = CutExecutor(_UnreachableChannel()).apply([])
        assert result.is_noop
        assert result.operation_id is None
        assert result == ExecutionResult.noop()


class TestRevert:

    def test_reverted_batch_raises_and_plan_is_unchanged(self, diamond):
        planner = ReconciliationPlanner(DispatchTableReader(diamond))
        facets = [make_facet("F1", OWNERSHIP_SIGNATURES, addr(1))]
        before = planner.plan(facets)

        diamond.revert_next()
        with pytest.raises(ExecutionReverted) as exc:
            CutExecutor(diamond).apply(before)

        assert exc.value.operation_id.startswith("0x")
        assert exc.value.operation_id in str(exc.value)
        assert planner.plan(facets) == before

    def test_invalid_entry_rolls_back_whole_batch(self, diamond):
        diamond.bind(OWNER, addr(2))
        snapshot = diamond.state_bytes()
        batch = [
            CutAction(FacetCutAction.ADD, addr(3), (BALANCE_OF,)),
            CutAction(FacetCutAction.ADD, addr(3), (OWNER,)),
        ]
        with pytest.raises(ExecutionReverted) as exc:
            CutExecutor(diamond).apply(batch)

        assert diamond.state_bytes() == snapshot
        assert "already exists" in diamond.revert_reason(exc.value.operation_id)

    def test_replace_with_same_facet_reverts(self, diamond):
        diamond.bind(OWNER, addr(2))
        with pytest.raises(ExecutionReverted):
            CutExecutor(diamond).apply([CutAction(FacetCutAction.REPLACE, addr(2), (OWNER,))])

    def test_remove_of_unbound_selector_reverts(self, diamond):
        with pytest.raises(ExecutionReverted):
            CutExecutor(diamond).apply([CutAction.remove([OWNER])])


class TestSuccess:

    def test_result_reports_touched_facets(self, diamond):
        diamond.bind(OWNER, addr(9))
        batch = [
            CutAction(FacetCutAction.REPLACE, addr(1), (OWNER,)),
            CutAction(FacetCutAction.ADD, addr(2), (BALANCE_OF,)),
        ]
        result = CutExecutor(diamond).apply(batch)
        assert result.submitted
        assert result.touched == frozenset({addr(1), addr(2)})
        assert result.touches(addr(1).upper().replace("0X", "0x"))
        assert not result.touches(addr(9))
        assert diamond.bindings == {OWNER: addr(1), BALANCE_OF: addr(2)}

    def test_remove_touches_nothing(self, diamond):
        diamond.bind(OWNER, addr(2))
        result = CutExecutor(diamond).apply([CutAction.remove([OWNER])])
        assert result.touched == frozenset()
        assert diamond.bindings == {}

    def test_one_submission_per_batch(self, diamond):
        batch = [
            CutAction(FacetCutAction.ADD, addr(1), (OWNER,)),
            CutAction(FacetCutAction.ADD, addr(2), (BALANCE_OF,)),
        ]
        CutExecutor(diamond).apply(batch)
        assert len(diamond.submissions) == 1
        assert diamond.submissions[0].actions == tuple(batch)

    def test_to_dict(self, diamond):
        result = CutExecutor(diamond).apply([CutAction(FacetCutAction.ADD, addr(1), (OWNER,))])
        data = result.to_dict()
        assert data["submitted"] is True
        assert data["actions"] == [
            {"facetAddress": addr(1), "action": 0, "functionSelectors": [OWNER]},
        ]


class TestChannel:

    def test_confirmation_depth_passed_through(self, diamond):
        CutExecutor(diamond, confirmations=4).apply([CutAction(FacetCutAction.ADD, addr(1), (OWNER,))])
        assert diamond.confirmations_requested == [4]

    def test_zero_confirmations_rejected(self, diamond):
        with pytest.raises(ValueError):
            CutExecutor(diamond, confirmations=0)

    def test_transport_error_surfaces_unchanged(self, diamond):
        diamond.transport_error = TimeoutError("no receipt after 120s")
        with pytest.raises(TimeoutError, match="no receipt"):
            CutExecutor(diamond).apply([CutAction(FacetCutAction.ADD, addr(1), (OWNER,))])

    def test_duplicate_selector_rejected_before_submission(self, diamond):
        batch = [
            CutAction(FacetCutAction.ADD, addr(1), (OWNER,)),
            CutAction(FacetCutAction.ADD, addr(2), (OWNER,)),
        ]
        with pytest.raises(InvalidCutAction):
            CutExecutor(diamond).apply(batch)
        assert diamond.submissions == []


class TestInitialization:

    def test_init_call_forwarded(self, diamond):
        init = _deploy(diamond)
        CutExecutor(diamond).apply(
            [CutAction(FacetCutAction.ADD, addr(1), (OWNER,))],
            init_target=init,
            init_payload="0xe1c7392a",
        )
        assert diamond.init_calls == [(init, "0xe1c7392a")]

    def test_zero_target_with_payload_reverts(self, diamond):
        with pytest.raises(ExecutionReverted):
            CutExecutor(diamond).apply(
                [CutAction(FacetCutAction.ADD, addr(1), (OWNER,))],
                init_target=ZERO_ADDRESS,
                init_payload="0x1234",
            )
        assert diamond.bindings == {}

    def test_undeployed_init_target_reverts(self, diamond):
        with pytest.raises(ExecutionReverted):
            CutExecutor(diamond).apply(
                [CutAction(FacetCutAction.ADD, addr(1), (OWNER,))],
                init_target=addr(99),
                init_payload="0x",
            )

    def test_malformed_init_target(self, diamond):
        with pytest.raises(ValueError):
            CutExecutor(diamond).apply(
                [CutAction(FacetCutAction.ADD, addr(1), (OWNER,))],
                init_target="0x1234",
            )


# =============================================================================
# VALUE TYPES
# =============================================================================

class TestCutAction:

    def test_remove_requires_zero_address(self):
        with pytest.raises(InvalidCutAction, match="zero address"):
            CutAction(FacetCutAction.REMOVE, addr(1), (OWNER,))

    def test_add_requires_facet_address(self):
        with pytest.raises(InvalidCutAction):
            CutAction(FacetCutAction.ADD, ZERO_ADDRESS, (OWNER,))

    def test_selectors_required(self):
        with pytest.raises(InvalidCutAction, match="no selectors"):
            CutAction(FacetCutAction.ADD, addr(1), ())

    def test_repeated_selector(self):
        with pytest.raises(InvalidCutAction):
            CutAction(FacetCutAction.ADD, addr(1), (OWNER, OWNER))

    def test_integer_action_coerced(self):
        action = CutAction(1, addr(1), (OWNER,))
        assert action.action is FacetCutAction.REPLACE
        assert action.to_tuple() == (addr(1), 1, [OWNER])


class TestFacet:

    def test_zero_address_rejected(self):
        with pytest.raises(ValueError):
            Facet("F1", ZERO_ADDRESS, frozenset({OWNER}))

    def test_malformed_selector_rejected(self):
        with pytest.raises(ValueError, match="malformed selectors"):
            Facet("F1", addr(1), frozenset({"0x8DA5CB5B"}))

    def test_selectors_frozen(self):
        facet = Facet("F1", addr(1), {OWNER})
        assert isinstance(facet.selectors, frozenset)
