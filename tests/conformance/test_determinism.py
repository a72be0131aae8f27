"""
Determinism Conformance Tests

INVARIANT: Same inputs produce the same outputs.

    redistribute(S, T)                     is a pure function (order included)
    retrieve_proxy_contract_address(a, d)  never changes, used or not
    replaying a call sequence              yields identical receipts and state

No clock, randomness or iteration-order dependence leaks into results.
"""

from hypothesis import given, settings, HealthCheck
from hypothesis import strategies as st

from multidelegate import (
    BatchProcessor, MultiDelegateError,
    redistribute, as_allocation, compute_proxy_address,
)
from tests.helpers import (
    PROCESSOR_ADDRESS, TOKEN_ADDRESS,
    new_token, approve_all, delegation_state,
)


DEPOSITORS = ["alice", "bob"]
DELEGATES = [f"0x{i:040x}" for i in range(1, 6)]

identifiers = st.text(
    alphabet=st.characters(whitelist_categories=("Ll", "Lu", "Nd")), min_size=1, max_size=12
)


@st.composite
def allocation(draw):
    delegates = draw(st.lists(st.sampled_from(DELEGATES), unique=True, max_size=5))
    amounts = draw(st.lists(
        st.integers(min_value=0, max_value=10 ** 30), min_size=len(delegates), max_size=len(delegates)
    ))
    return list(zip(delegates, amounts))


@st.composite
def delegate_call(draw):
    caller = draw(st.sampled_from(DEPOSITORS))
    sources = draw(st.lists(st.sampled_from(DELEGATES), unique=True, max_size=3))
    targets = draw(st.lists(st.sampled_from(DELEGATES), unique=True, max_size=3))
    amounts = draw(st.lists(
        st.integers(min_value=1, max_value=3_000), min_size=len(targets), max_size=len(targets)
    ))
    return caller, sources, targets, amounts


def _run(calls):
    token = new_token(alice=10_000, bob=10_000)
    processor = BatchProcessor(token, address=PROCESSOR_ADDRESS, verbose=False)
    approve_all(token, processor.address, DEPOSITORS)
    outcomes = []
    for args in calls:
        try:
            receipt = processor.delegate_multi(*args)
            outcomes.append((receipt.intent_id, receipt.exec_id, receipt.instructions, receipt.movements))
        except MultiDelegateError as e:
            outcomes.append(type(e).__name__)
    return processor, outcomes


class TestPlanDeterminism:
    """redistribute is a pure function."""

    @given(allocation(), allocation())
    @settings(max_examples=200)
    def test_same_plan_every_time(self, source, target):
        first = redistribute(source, target)
        for _ in range(3):
            assert redistribute(source, target) == first

    @given(allocation(), allocation())
    def test_tuple_and_entry_inputs_agree(self, source, target):
        assert redistribute(source, target) == redistribute(as_allocation(source), as_allocation(target))


class TestAddressDeterminism:
    """Proxy addresses depend only on operator, asset and delegate."""

    @given(identifiers)
    def test_address_stable(self, delegate):
        assert compute_proxy_address(TOKEN_ADDRESS, delegate, PROCESSOR_ADDRESS) == \
            compute_proxy_address(TOKEN_ADDRESS, delegate, PROCESSOR_ADDRESS)

    @given(identifiers, identifiers)
    def test_distinct_delegates_distinct_addresses(self, a, b):
        if a != b:
            assert compute_proxy_address(TOKEN_ADDRESS, a) != compute_proxy_address(TOKEN_ADDRESS, b)

    def test_address_unchanged_by_use(self):
        token = new_token(alice=100)
        processor = BatchProcessor(token, address=PROCESSOR_ADDRESS, verbose=False)
        approve_all(token, processor.address, ["alice"])
        before = processor.retrieve_proxy_contract_address(TOKEN_ADDRESS, DELEGATES[0])
        processor.delegate_multi("alice", [], [DELEGATES[0]], [100])
        processor.delegate_multi("alice", [DELEGATES[0]], [], [])
        assert processor.retrieve_proxy_contract_address(TOKEN_ADDRESS, DELEGATES[0]) == before

    def test_two_processors_same_operator_agree(self):
        """Separate processor instances with one operator derive the same proxies."""
        a = BatchProcessor(new_token(), address=PROCESSOR_ADDRESS, verbose=False)
        b = BatchProcessor(new_token(), address=PROCESSOR_ADDRESS, verbose=False)
        for d in DELEGATES:
            assert a.registry.address_of(d) == b.registry.address_of(d)


class TestReplayDeterminism:
    """Replaying a sequence of calls reproduces receipts and state."""

    @given(st.lists(delegate_call(), min_size=1, max_size=10))
    @settings(max_examples=75, suppress_health_check=[HealthCheck.too_slow])
    def test_replay_identical(self, calls):
        first, first_outcomes = _run(calls)
        second, second_outcomes = _run(calls)
        assert first_outcomes == second_outcomes
        assert delegation_state(first, DEPOSITORS) == delegation_state(second, DEPOSITORS)
        assert first.asset.movement_log == second.asset.movement_log
        assert first.proxy_events == second.proxy_events
