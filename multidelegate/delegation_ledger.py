"""
delegation_ledger.py - Semi-Fungible Delegation Ledger

DelegationLedger records how much each depositor has routed through each
delegate's proxy: a sparse table (depositor, delegate) -> amount, where
every delegate plays the role of a token id.

Invariants:
    - Conservation: for every delegate, the sum of its entries equals the
      asset balance custodied by the delegate's proxy (checked by
      verify_conservation()).
    - Sparseness: an entry that reaches zero is removed, so an absent entry
      and a zero entry are the same thing.

The ledger is the only place delegation balances change. debit() refuses to
go below zero, credit() refuses to overflow.
"""

from __future__ import annotations
from collections import defaultdict
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .core import (
    Address, Amount, DelegateId, VotableAsset,
    MAX_AMOUNT,
    ArityMismatch, InsufficientBalance, AmountOverflow,
    token_id_of, validate_amount, validate_identifier,
)


class DelegationLedger:
    """
    Sparse (depositor, delegate) -> amount balance table.

    Implements the DelegationView protocol. Keeps an inverted index
    delegate -> {depositor -> amount} so per-delegate totals and position
    listings do not scan the whole table.

    Example:
        ledger = DelegationLedger()
        ledger.credit("alice", "bob", 100)
        ledger.debit("alice", "bob", 40)
        ledger.balance_of("alice", "bob")   # 60
        ledger.total_for("bob")             # 60
    """

    def __init__(self, uri: Optional[str] = None):
        """
        Args:
            uri: Metadata URI template; "{id}" is replaced by the delegate's
                 64 hex digit token id
        """
        self.uri_template = uri
        self._entries: Dict[Tuple[Address, DelegateId], Amount] = {}
        self._positions_by_delegate: Dict[DelegateId, Dict[Address, Amount]] = defaultdict(dict)
        self._totals: Dict[DelegateId, Amount] = {}

    # ========================================================================
    # DelegationView PROTOCOL IMPLEMENTATION (read-only methods)
    # ========================================================================

    def balance_of(self, depositor: Address, delegate: DelegateId) -> Amount:
        """Return depositor's entry for delegate (0 if absent)."""
        return self._entries.get((depositor, delegate), 0)

    def total_for(self, delegate: DelegateId) -> Amount:
        """Return the sum of all depositors' entries for delegate."""
        return self._totals.get(delegate, 0)

    def balance_of_batch(
        self,
        depositors: Sequence[Address],
        delegates: Sequence[DelegateId],
    ) -> List[Amount]:
        """
        Pairwise balance lookup.

        Raises:
            ArityMismatch: If the two sequences differ in length
        """
        if len(depositors) != len(delegates):
            raise ArityMismatch(
                f"balance_of_batch: {len(depositors)} depositors vs {len(delegates)} delegates"
            )
        return [self.balance_of(a, d) for a, d in zip(depositors, delegates)]

    def positions_for(self, delegate: DelegateId) -> Dict[Address, Amount]:
        """Return every depositor's non-zero entry for delegate."""
        return dict(self._positions_by_delegate.get(delegate, {}))

    def holdings_of(self, depositor: Address) -> Dict[DelegateId, Amount]:
        """Return depositor's non-zero entries keyed by delegate."""
        return {
            d: amount for (a, d), amount in self._entries.items()
            if a == depositor
        }

    def delegates(self) -> List[DelegateId]:
        """Return delegates that currently hold a non-zero total, sorted."""
        return sorted(self._totals)

    def uri(self, delegate: DelegateId) -> Optional[str]:
        """Return the metadata URI of delegate's token id (None without a template)."""
        if self.uri_template is None:
            return None
        return self.uri_template.replace("{id}", format(token_id_of(delegate), "064x"))

    def verify_conservation(self, asset: VotableAsset, registry) -> Dict[str, Any]:
        """
        Verify that every delegate's total matches its proxy's asset balance.

        Every provisioned proxy is checked, including proxies whose ledger
        total is zero (their balance must then be zero as well).

        Args:
            asset: The underlying asset
            registry: ProxyRegistry holding the delegates' proxies

        Returns:
            Dict with keys:
            - 'valid': bool - True if every delegate balances
            - 'totals': Dict[delegate, ledger total]
            - 'discrepancies': List of {delegate, ledger, custodied, difference}
        """
        totals = {}
        discrepancies = []
        delegates = set(self._totals) | set(registry.delegates())
        for delegate in sorted(delegates):
            ledger_total = self.total_for(delegate)
            totals[delegate] = ledger_total
            custodied = asset.balance_of(registry.address_of(delegate))
            if custodied != ledger_total:
                discrepancies.append({
                    'delegate': delegate,
                    'ledger': ledger_total,
                    'custodied': custodied,
                    'difference': custodied - ledger_total,
                })
        return {
            'valid': len(discrepancies) == 0,
            'totals': totals,
            'discrepancies': discrepancies,
        }

    # ========================================================================
    # MUTATING OPERATIONS
    # ========================================================================

    def credit(self, depositor: Address, delegate: DelegateId, amount: Amount) -> Amount:
        """
        Increase depositor's entry for delegate by amount.

        Returns:
            The new entry

        Raises:
            AmountOverflow: If the entry or the delegate total would exceed MAX_AMOUNT
        """
        validate_identifier(depositor, "depositor")
        validate_identifier(delegate, "delegate")
        validate_amount(amount)
        new_balance = self.balance_of(depositor, delegate) + amount
        new_total = self.total_for(delegate) + amount
        if new_balance > MAX_AMOUNT or new_total > MAX_AMOUNT:
            raise AmountOverflow(f"Delegation to {delegate} would exceed 2**256 - 1")
        self._set(depositor, delegate, new_balance, new_total)
        return new_balance

    def debit(self, depositor: Address, delegate: DelegateId, amount: Amount) -> Amount:
        """
        Decrease depositor's entry for delegate by amount.

        Returns:
            The new entry

        Raises:
            InsufficientBalance: If amount exceeds the current entry
        """
        validate_amount(amount)
        current = self.balance_of(depositor, delegate)
        if amount > current:
            raise InsufficientBalance(
                f"{depositor} has {current} delegated to {delegate}, cannot withdraw {amount}"
            )
        self._set(depositor, delegate, current - amount, self.total_for(delegate) - amount)
        return current - amount

    def set_uri(self, uri: Optional[str]) -> None:
        self.uri_template = uri

    def _set(self, depositor: Address, delegate: DelegateId, balance: Amount, total: Amount) -> None:
        """Write an entry and keep the inverted index and totals sparse."""
        key = (depositor, delegate)
        if balance:
            self._entries[key] = balance
            self._positions_by_delegate[delegate][depositor] = balance
        else:
            self._entries.pop(key, None)
            self._positions_by_delegate[delegate].pop(depositor, None)
            if not self._positions_by_delegate[delegate]:
                del self._positions_by_delegate[delegate]
        if total:
            self._totals[delegate] = total
        else:
            self._totals.pop(delegate, None)

    # ========================================================================
    # CLONING
    # ========================================================================

    def clone(self) -> DelegationLedger:
        """Create a deep copy; changes to the clone never reach this ledger."""
        cloned = DelegationLedger.__new__(DelegationLedger)
        cloned.uri_template = self.uri_template
        cloned._entries = dict(self._entries)
        cloned._positions_by_delegate = defaultdict(dict)
        for delegate, positions in self._positions_by_delegate.items():
            cloned._positions_by_delegate[delegate] = dict(positions)
        cloned._totals = dict(self._totals)
        return cloned

    def snapshot(self) -> DelegationLedger:
        return self.clone()

    def restore(self, snapshot: DelegationLedger) -> None:
        """Put back the entries captured by snapshot()."""
        restored = snapshot.clone()
        self.uri_template = restored.uri_template
        self._entries = restored._entries
        self._positions_by_delegate = restored._positions_by_delegate
        self._totals = restored._totals

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        return f"DelegationLedger({len(self._entries)} entries, {len(self._totals)} delegates)"
