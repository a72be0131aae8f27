"""
Conservation Law Conformance Tests

INVARIANT: For every delegate d, after any sequence of successful calls:
    Σ_{depositors a} balance_of(a, d) = get_balance_for_delegate(d)
                                      = asset.balance_of(Proxy(d))

Redelegation moves custody between proxies but never creates or destroys
any of the underlying asset; total supply and voting weight are preserved.
"""

import pytest
from hypothesis import given, settings, HealthCheck
from hypothesis import strategies as st

from multidelegate import BatchProcessor, OptimizedBatchProcessor, MultiDelegateError
from tests.helpers import PROCESSOR_ADDRESS, new_token, approve_all, assert_conserved


# =============================================================================
# STRATEGIES FOR PROPERTY-BASED TESTING
# =============================================================================

DEPOSITORS = ["alice", "bob", "carol"]
DELEGATES = ["d1", "d2", "d3", "d4"]
FUNDING = 5_000


@st.composite
def delegate_call(draw):
    """
    Generate a delegate_multi call.

    Sources are drawn freely, so some calls are rejected with
    NothingToWithdraw; rejected calls must not disturb conservation either.
    """
    caller = draw(st.sampled_from(DEPOSITORS))
    sources = draw(st.lists(st.sampled_from(DELEGATES), unique=True, max_size=len(DELEGATES)))
    targets = draw(st.lists(st.sampled_from(DELEGATES), unique=True, max_size=len(DELEGATES)))
    amounts = draw(st.lists(
        st.integers(min_value=1, max_value=FUNDING),
        min_size=len(targets), max_size=len(targets),
    ))
    return caller, sources, targets, amounts


def _fresh(processor_class):
    token = new_token(**{a: FUNDING for a in DEPOSITORS})
    processor = processor_class(token, address=PROCESSOR_ADDRESS, verbose=False)
    approve_all(token, processor.address, DEPOSITORS)
    return processor


# =============================================================================
# PROPERTIES
# =============================================================================

@pytest.mark.parametrize("processor_class", [BatchProcessor, OptimizedBatchProcessor], ids=["plain", "optimized"])
class TestConservationProperties:
    """Property-based conservation tests."""

    @given(calls=st.lists(delegate_call(), min_size=1, max_size=15))
    @settings(max_examples=100, suppress_health_check=[HealthCheck.too_slow])
    def test_ledger_matches_custody(self, processor_class, calls):
        """
        PROPERTY: ledger totals equal proxy balances after every call.
        """
        processor = _fresh(processor_class)
        for args in calls:
            try:
                processor.delegate_multi(*args)
            except MultiDelegateError:
                pass
            assert_conserved(processor)

    @given(calls=st.lists(delegate_call(), min_size=1, max_size=15))
    @settings(max_examples=100, suppress_health_check=[HealthCheck.too_slow])
    def test_entries_sum_to_totals(self, processor_class, calls):
        """
        PROPERTY: Σ_a balance_of(a, d) = get_balance_for_delegate(d).
        """
        processor = _fresh(processor_class)
        for args in calls:
            try:
                processor.delegate_multi(*args)
            except MultiDelegateError:
                pass
        for d in DELEGATES:
            entries = processor.balance_of_batch(DEPOSITORS, [d] * len(DEPOSITORS))
            assert sum(entries) == processor.get_balance_for_delegate(d)

    @given(calls=st.lists(delegate_call(), min_size=1, max_size=15))
    @settings(max_examples=100, suppress_health_check=[HealthCheck.too_slow])
    def test_depositor_wealth_preserved(self, processor_class, calls):
        """
        PROPERTY: wallet + delegated entries is constant per depositor.
        """
        processor = _fresh(processor_class)
        for args in calls:
            try:
                processor.delegate_multi(*args)
            except MultiDelegateError:
                pass
        for a in DEPOSITORS:
            delegated = sum(processor.ledger.holdings_of(a).values())
            assert processor.asset.balance_of(a) + delegated == FUNDING

    @given(calls=st.lists(delegate_call(), min_size=1, max_size=15))
    @settings(max_examples=50, suppress_health_check=[HealthCheck.too_slow])
    def test_votes_equal_custody(self, processor_class, calls):
        """
        PROPERTY: every delegate's voting weight is exactly what its proxy holds.
        """
        processor = _fresh(processor_class)
        for args in calls:
            try:
                processor.delegate_multi(*args)
            except MultiDelegateError:
                pass
        for d in DELEGATES:
            assert processor.asset.get_votes(d) == processor.get_balance_for_delegate(d)
        assert processor.asset.total_supply == FUNDING * len(DEPOSITORS)


class TestConservationEdgeCases:
    """Edge cases for the conservation invariant."""

    def test_empty_processor_conserved(self, processor):
        assert processor.verify_conservation() == {'valid': True, 'totals': {}, 'discrepancies': []}

    def test_emptied_proxy_still_checked(self, processor):
        processor.delegate_multi("deployer", [], ["alice"], [10])
        processor.delegate_multi("deployer", ["alice"], [], [])
        result = processor.verify_conservation()
        assert result['valid']
        assert result['totals'] == {"alice": 0}

    def test_tokens_sent_straight_to_proxy_are_flagged(self, processor):
        """Custody the ledger does not know about breaks conservation."""
        processor.delegate_multi("deployer", [], ["alice"], [10])
        processor.asset.transfer("deployer", processor.registry.address_of("alice"), 5)
        result = processor.verify_conservation()
        assert not result['valid']
        assert result['discrepancies'][0]['difference'] == 5
