"""
redistribution.py - Delegation Redistribution Plans

Pure functions that turn an old allocation (what a depositor unwinds) and a
new allocation (what the depositor wants afterwards) into an ordered list of
transfer instructions:

1. redistribute() - greedy two-pointer merge of the two allocations
2. net_proxy_deltas() - signed net change per delegate for a plan
3. source_allocation_from() - the allocation a depositor unwinds, read from a view
4. as_allocation() / allocation_total() - small allocation helpers

Nothing here writes ledger state; source_allocation_from() only reads it
through a DelegationView. The same inputs always give the same plan, in
the same order.

Example:
    redistribute([("d1", 10), ("d2", 5)], [("d3", 7)])
    # (Transfer(7: d1→d3), Transfer(3: d1→wallet), Transfer(5: d2→wallet))
"""

from __future__ import annotations
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

from .core import (
    AllocationEntry, TransferInstruction, DelegationView,
    Address, Allocation, Amount, DelegateId,
    NothingToWithdraw,
)


AllocationLike = Union[AllocationEntry, Tuple[DelegateId, Amount]]


def as_allocation(pairs: Iterable[AllocationLike]) -> Allocation:
    """
    Normalize (delegate, amount) pairs into an Allocation.

    Raises:
        ValueError: If an amount is negative or not an integer
    """
    entries = []
    for pair in pairs:
        if isinstance(pair, AllocationEntry):
            entries.append(pair)
        else:
            delegate, amount = pair
            entries.append(AllocationEntry(delegate, amount))
    return tuple(entries)


def allocation_total(allocation: Iterable[AllocationLike]) -> Amount:
    """Sum of the amounts of an allocation."""
    return sum(entry.amount for entry in as_allocation(allocation))


def source_allocation_from(
    view: DelegationView,
    depositor: Address,
    delegates: Iterable[DelegateId],
) -> Allocation:
    """
    Build the allocation a depositor unwinds: their whole entry per delegate.

    Args:
        view: Read-only delegation balances
        depositor: Whose entries are read
        delegates: Delegates to unwind, in call order

    Raises:
        NothingToWithdraw: If a delegate holds nothing for depositor, whether
                           it was never used or has been emptied
    """
    entries = []
    for delegate in delegates:
        balance = view.balance_of(depositor, delegate)
        if balance == 0:
            raise NothingToWithdraw(f"{depositor} has nothing delegated to {delegate}")
        entries.append(AllocationEntry(delegate, balance))
    return tuple(entries)


def redistribute(
    source_allocation: Sequence[AllocationLike],
    target_allocation: Sequence[AllocationLike],
) -> Tuple[TransferInstruction, ...]:
    """
    Compute the transfer plan that turns source_allocation into target_allocation.

    Walks both allocations with one cursor each. At every step the smaller
    of the two remaining amounts moves from the current source to the
    current target; whichever side is used up advances (both advance on a
    tie). Once one side runs out, the leftover sources become withdrawals to
    the depositor and the leftover targets become deposits from the
    depositor. Zero-amount entries never produce an instruction.

    Args:
        source_allocation: (delegate, amount) pairs being unwound
        target_allocation: (delegate, amount) pairs being established

    Returns:
        Tuple of TransferInstruction, at most len(source) + len(target) long.
        Sum of amounts with a source equals the source total; sum of amounts
        with a target equals the target total.
    """
    sources = as_allocation(source_allocation)
    targets = as_allocation(target_allocation)

    source_remaining = [entry.amount for entry in sources]
    target_remaining = [entry.amount for entry in targets]

    instructions: List[TransferInstruction] = []
    si = _skip_empty(source_remaining, 0)
    ti = _skip_empty(target_remaining, 0)

    while si < len(sources) and ti < len(targets):
        transferred = min(source_remaining[si], target_remaining[ti])
        instructions.append(TransferInstruction(
            sources[si].delegate, targets[ti].delegate, transferred
        ))
        source_remaining[si] -= transferred
        target_remaining[ti] -= transferred
        if source_remaining[si] == 0:
            si = _skip_empty(source_remaining, si + 1)
        if target_remaining[ti] == 0:
            ti = _skip_empty(target_remaining, ti + 1)

    for i in range(si, len(sources)):
        if source_remaining[i]:
            instructions.append(TransferInstruction(sources[i].delegate, None, source_remaining[i]))

    for i in range(ti, len(targets)):
        if target_remaining[i]:
            instructions.append(TransferInstruction(None, targets[i].delegate, target_remaining[i]))

    return tuple(instructions)


def _skip_empty(remaining: List[Amount], index: int) -> int:
    """Advance index past zero entries."""
    while index < len(remaining) and remaining[index] == 0:
        index += 1
    return index


def net_proxy_deltas(
    instructions: Iterable[TransferInstruction],
) -> Dict[Optional[DelegateId], int]:
    """
    Accumulate the signed net change of every party touched by a plan.

    Keys are delegates, plus None for the depositor's own wallet; values are
    positive for net inflow and negative for net outflow. Parties whose
    changes cancel out keep a 0 entry. Keys are ordered by first appearance
    in the plan.

    The deltas always sum to zero.
    """
    deltas: Dict[Optional[DelegateId], int] = {}
    for ins in instructions:
        deltas[ins.from_delegate] = deltas.get(ins.from_delegate, 0) - ins.amount
        deltas[ins.to_delegate] = deltas.get(ins.to_delegate, 0) + ins.amount
    return deltas
