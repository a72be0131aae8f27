"""
batch.py - Batched Multi-Delegation

BatchProcessor is the public entry point of the system. delegate_multi()
unwinds a depositor's current allocation for some delegates and establishes
a new allocation for others in a single all-or-nothing call:

1. Validate arguments (arity, zero amounts, duplicates, empty sources)
2. Read the source allocation from the ledger, take the target allocation
   from the caller
3. redistribute() the two into transfer instructions
4. Debit/credit the ledger, provisioning target proxies on first use
5. Move the underlying asset between proxies and the caller's wallet

Any failure in steps 4-5 restores the ledger, the proxy registry, the event
log and the asset to their state before the call, and the error propagates
unchanged.

OptimizedBatchProcessor applies the same plan to the ledger but nets the
asset movements per proxy, so every proxy is touched by at most one
movement per call.
"""

from __future__ import annotations
from typing import Any, Dict, List, Optional, Sequence, Tuple
import threading

from .core import (
    # Types
    Address, Amount, DelegateId, VotableAsset,
    AllocationEntry, TransferInstruction, AssetMovement,
    DelegationProcessed, ProxyDeployed, BatchReceipt,
    # Constants
    DEFAULT_PROCESSOR_ADDRESS,
    # Exceptions
    MultiDelegateError, FatalError,
    ArityMismatch, ZeroAmount, DuplicateDelegate,
    InsufficientBalance, Unauthorized,
    # Helpers
    compute_intent_id, compute_proxy_address,
    validate_amount, validate_identifier,
)
from .delegation_ledger import DelegationLedger
from .proxy import ProxyRegistry
from .redistribution import redistribute, net_proxy_deltas, source_allocation_from


# Rollback restores the whole asset, so every processor bound to one asset
# holds the same lock. A recycled id() only makes two assets share a lock.
_asset_locks: Dict[int, threading.Lock] = {}
_asset_locks_guard = threading.Lock()


def asset_lock(asset: VotableAsset) -> threading.Lock:
    """Return the lock shared by every processor bound to asset."""
    with _asset_locks_guard:
        return _asset_locks.setdefault(id(asset), threading.Lock())


class BatchProcessor:
    """
    Batched delegation across many delegates through per-delegate proxies.

    Owns its DelegationLedger and ProxyRegistry; the asset is an external
    collaborator. Every call to delegate_multi() and preview() runs under a
    lock shared by all processors bound to the same asset, so calls touching
    one asset never interleave and a rollback never undoes another call.

    Example:
        token = VotesToken("ENS")
        processor = BatchProcessor(token, verbose=False)
        token.mint("alice", 1000)
        token.approve("alice", processor.address, 1000)

        processor.delegate_multi("alice", [], ["bob", "carol"], [600, 400])
        processor.delegate_multi("alice", ["bob"], ["dave"], [600])
        processor.balance_of("alice", "dave")   # 600
    """

    def __init__(
        self,
        asset: VotableAsset,
        address: Address = DEFAULT_PROCESSOR_ADDRESS,
        owner: Optional[Address] = None,
        uri: Optional[str] = None,
        name: str = "multidelegate",
        verbose: bool = True,
    ):
        """
        Create a processor.

        Args:
            asset: The underlying votable asset
            address: Account the processor acts as on the asset (the spender
                     depositors approve, and the operator of every proxy)
            owner: Account allowed to change the metadata URI template
            uri: Metadata URI template with an "{id}" placeholder
            name: Processor identifier used in execution ids
            verbose: Print applied batches with the proxies they deployed,
                     and rejected batches (default: True)
        """
        self.asset = asset
        self.address = validate_identifier(address, "address")
        self.owner = owner
        self.name = name
        self.verbose = verbose
        self.ledger = DelegationLedger(uri=uri)
        self.registry = ProxyRegistry(asset, operator=self.address)
        self.events: List[DelegationProcessed] = []
        self.batch_log: List[BatchReceipt] = []
        self._next_sequence: int = 0
        self._lock = asset_lock(asset)

    # ========================================================================
    # READ-ONLY VIEWS
    # ========================================================================

    def retrieve_proxy_contract_address(self, asset_id: Address, delegate_id: DelegateId) -> Address:
        """Return the proxy address for (asset, delegate); valid before provisioning."""
        return compute_proxy_address(asset_id, delegate_id, self.address)

    def get_balance_for_delegate(self, delegate_id: DelegateId) -> Amount:
        """Return the total routed to delegate_id by all depositors."""
        return self.ledger.total_for(delegate_id)

    def balance_of(self, depositor: Address, delegate_id: DelegateId) -> Amount:
        return self.ledger.balance_of(depositor, delegate_id)

    def balance_of_batch(
        self, depositors: Sequence[Address], delegate_ids: Sequence[DelegateId]
    ) -> List[Amount]:
        return self.ledger.balance_of_batch(depositors, delegate_ids)

    def uri(self, delegate_id: DelegateId) -> Optional[str]:
        return self.ledger.uri(delegate_id)

    @property
    def proxy_events(self) -> List[ProxyDeployed]:
        return list(self.registry.events)

    def verify_conservation(self) -> Dict[str, Any]:
        """Check every delegate's ledger total against its proxy's balance."""
        return self.ledger.verify_conservation(self.asset, self.registry)

    # ========================================================================
    # ADMINISTRATION
    # ========================================================================

    def set_uri(self, caller: Address, uri: Optional[str]) -> None:
        """
        Replace the metadata URI template.

        Raises:
            Unauthorized: If caller is not the owner
        """
        if self.owner is None or caller != self.owner:
            raise Unauthorized(f"{caller} is not the owner of {self.name}")
        self.ledger.set_uri(uri)

    # ========================================================================
    # BATCH EXECUTION (Mutating)
    # ========================================================================

    def preview(
        self,
        caller: Address,
        source_delegates: Sequence[DelegateId],
        target_delegates: Sequence[DelegateId],
        amounts: Sequence[Amount],
    ) -> Tuple[Tuple[TransferInstruction, ...], Tuple[AssetMovement, ...]]:
        """
        Validate a call and return its plan without applying it.

        Returns:
            (instructions, asset movements) that delegate_multi() would apply

        Raises:
            The same errors delegate_multi() raises during validation
        """
        with self._lock:
            _, _, _, instructions = self._prepare(caller, source_delegates, target_delegates, amounts)
            return instructions, self._plan_movements(caller, instructions)

    def delegate_multi(
        self,
        caller: Address,
        source_delegates: Sequence[DelegateId],
        target_delegates: Sequence[DelegateId],
        amounts: Sequence[Amount],
    ) -> BatchReceipt:
        """
        Move caller's delegation from source_delegates to target_delegates.

        The whole current entry of every source is unwound; every target
        receives exactly its amount. Net surplus goes back to the caller's
        wallet, net shortfall is pulled from it (the caller must have
        approved this processor's address on the asset beforehand).

        Args:
            caller: Depositor making the call
            source_delegates: Delegates to withdraw from (may be empty)
            target_delegates: Delegates to deposit to (may be empty)
            amounts: Amount per target delegate

        Returns:
            BatchReceipt of the applied call

        Raises:
            ArityMismatch: len(target_delegates) != len(amounts)
            ZeroAmount: A target amount is zero
            DuplicateDelegate: An id repeats within sources or within targets
            NothingToWithdraw: A source holds nothing for caller
            InsufficientBalance: A ledger debit exceeds the caller's entry
            AssetMovementFailed: The asset refused a transfer
            ProxyProvisioningFailed: A proxy address collides (fatal)
            AmountOverflow: An amount leaves the uint256 range (fatal)
        """
        with self._lock:
            try:
                sources, targets, amounts_t, instructions = self._prepare(
                    caller, source_delegates, target_delegates, amounts
                )
                self._check_debits(caller, instructions)
            except (MultiDelegateError, FatalError) as e:
                self._report_rejection(caller, e)
                raise

            if not instructions:
                return self._make_receipt(caller, sources, targets, amounts_t, (), (), (), "noop")

            snapshot = self._snapshot()
            try:
                provisioned = self._apply_ledger(caller, instructions)
                movements = self._plan_movements(caller, instructions)
                for movement in movements:
                    self._issue(movement)
            except Exception as e:
                self._restore(snapshot)
                self._report_rejection(caller, e)
                raise

            sequence = self._next_sequence
            self._next_sequence += 1
            receipt = self._make_receipt(
                caller, sources, targets, amounts_t, instructions, movements,
                tuple(provisioned), f"exec:{self.name}:{sequence:012d}", sequence,
            )
            self.batch_log.append(receipt)
            if self.verbose:
                self._print_receipt(receipt, "APPLIED", "✓")
            return receipt

    def _prepare(
        self,
        caller: Address,
        source_delegates: Sequence[DelegateId],
        target_delegates: Sequence[DelegateId],
        amounts: Sequence[Amount],
    ) -> Tuple[Tuple[DelegateId, ...], Tuple[DelegateId, ...], Tuple[Amount, ...], Tuple[TransferInstruction, ...]]:
        """
        Validate a call and compute its plan. Reads state, never writes it.

        Checks run in this order: arity, duplicates, target amounts, sources.
        """
        validate_identifier(caller, "caller")
        sources = tuple(source_delegates)
        targets = tuple(target_delegates)
        amounts_t = tuple(amounts)

        if len(targets) != len(amounts_t):
            raise ArityMismatch(
                f"{len(targets)} target delegates but {len(amounts_t)} amounts"
            )

        for side, ids in (("source", sources), ("target", targets)):
            seen = set()
            for delegate in ids:
                validate_identifier(delegate, f"{side} delegate")
                if delegate in seen:
                    raise DuplicateDelegate(f"{delegate} appears twice among {side} delegates")
                seen.add(delegate)

        for delegate, amount in zip(targets, amounts_t):
            validate_amount(amount, f"amount for {delegate}")
            if amount == 0:
                raise ZeroAmount(f"Zero amount for target delegate {delegate}")

        source_allocation = source_allocation_from(self.ledger, caller, sources)
        target_allocation = [AllocationEntry(d, a) for d, a in zip(targets, amounts_t)]
        instructions = redistribute(source_allocation, target_allocation)
        return sources, targets, amounts_t, instructions

    def _check_debits(self, caller: Address, instructions: Sequence[TransferInstruction]) -> None:
        """Fail before anything moves if the plan debits more than the ledger holds."""
        debits: Dict[DelegateId, Amount] = {}
        for ins in instructions:
            if ins.from_delegate is not None:
                debits[ins.from_delegate] = debits.get(ins.from_delegate, 0) + ins.amount
        for delegate, total in debits.items():
            available = self.ledger.balance_of(caller, delegate)
            if total > available:
                raise InsufficientBalance(
                    f"{caller} has {available} delegated to {delegate}, plan withdraws {total}"
                )

    def _apply_ledger(self, caller: Address, instructions: Sequence[TransferInstruction]) -> List[DelegateId]:
        """
        Apply the plan to the ledger, provisioning target proxies on first use.

        Returns:
            Delegates whose proxy was provisioned by this call
        """
        provisioned = []
        for ins in instructions:
            if ins.from_delegate is not None:
                self.ledger.debit(caller, ins.from_delegate, ins.amount)
            if ins.to_delegate is not None:
                if not self.registry.exists(ins.to_delegate):
                    provisioned.append(ins.to_delegate)
                self.registry.ensure(ins.to_delegate)
                self.ledger.credit(caller, ins.to_delegate, ins.amount)
            self.events.append(DelegationProcessed(ins.from_delegate, ins.to_delegate, ins.amount))
        return provisioned

    def _party_address(self, caller: Address, delegate: Optional[DelegateId]) -> Address:
        """Asset account of a plan party: the caller's wallet or a proxy."""
        if delegate is None:
            return caller
        return self.registry.address_of(delegate)

    def _plan_movements(
        self, caller: Address, instructions: Sequence[TransferInstruction]
    ) -> Tuple[AssetMovement, ...]:
        """One asset movement per instruction."""
        return tuple(
            AssetMovement(
                self._party_address(caller, ins.from_delegate),
                self._party_address(caller, ins.to_delegate),
                ins.amount,
            )
            for ins in instructions
        )

    def _issue(self, movement: AssetMovement) -> None:
        """Execute one movement; the processor spends from everyone but itself."""
        if movement.source == self.address:
            self.asset.transfer(self.address, movement.dest, movement.amount)
        else:
            self.asset.transfer_from(self.address, movement.source, movement.dest, movement.amount)

    # ========================================================================
    # ROLLBACK
    # ========================================================================

    def _snapshot(self) -> Tuple[Any, ...]:
        return (
            self.ledger.snapshot(),
            self.registry.snapshot(),
            self.asset.snapshot(),
            len(self.events),
        )

    def _restore(self, snapshot: Tuple[Any, ...]) -> None:
        ledger_state, registry_state, asset_state, event_count = snapshot
        self.ledger.restore(ledger_state)
        self.registry.restore(registry_state)
        self.asset.restore(asset_state)
        del self.events[event_count:]

    # ========================================================================
    # RECEIPTS & REPORTING
    # ========================================================================

    def _make_receipt(
        self,
        caller: Address,
        sources: Tuple[DelegateId, ...],
        targets: Tuple[DelegateId, ...],
        amounts: Tuple[Amount, ...],
        instructions: Tuple[TransferInstruction, ...],
        movements: Tuple[AssetMovement, ...],
        provisioned: Tuple[DelegateId, ...],
        exec_id: str,
        sequence: int = -1,
    ) -> BatchReceipt:
        return BatchReceipt(
            caller=caller,
            sources=sources,
            targets=targets,
            amounts=amounts,
            instructions=instructions,
            movements=movements,
            provisioned=provisioned,
            intent_id=compute_intent_id(caller, sources, targets, amounts, instructions),
            exec_id=exec_id,
            processor_name=self.name,
            sequence_number=sequence,
        )

    def _report_rejection(self, caller: Address, error: Exception) -> None:
        if self.verbose:
            print(f"✗ REJECTED ({caller}): {type(error).__name__}: {error}")

    def _print_receipt(self, receipt: BatchReceipt, result: str, icon: str) -> None:
        """Print the boxed receipt with a result line in place of the closing bar."""
        lines = repr(receipt).split('\n')
        w = 100
        bar = "─" * w

        def pad(text: str) -> str:
            if len(text) > w:
                return text[:w-3] + "..."
            return text + " " * (w - len(text))

        lines[-1] = f"├{bar}┤"
        lines.append(f"│{pad(' ' + icon + ' ' + result)}│")
        lines.append(f"└{bar}┘")
        for delegate in receipt.provisioned:
            lines.append(f"📝 Proxy deployed: {delegate} → {self.registry.address_of(delegate)}")
        print("\n".join(lines))


class OptimizedBatchProcessor(BatchProcessor):
    """
    BatchProcessor that nets asset movements per proxy.

    The ledger sees exactly the same instructions; only the asset calls
    differ. Net outflows are collected into the processor's own account and
    paid out from there, so each proxy appears in at most one movement and
    the processor's account ends every call where it started. A single
    payer and a single payee settle directly, and when the caller's wallet
    is the only paying (or only receiving) party its movements go straight
    to (or come straight from) the proxies.
    """

    def _plan_movements(
        self, caller: Address, instructions: Sequence[TransferInstruction]
    ) -> Tuple[AssetMovement, ...]:
        deltas = net_proxy_deltas(instructions)
        payers = [(party, -delta) for party, delta in deltas.items() if delta < 0]
        payees = [(party, delta) for party, delta in deltas.items() if delta > 0]
        if not payers:
            return ()

        if len(payers) == 1 and len(payees) == 1:
            (payer, amount), (payee, _) = payers[0], payees[0]
            return (AssetMovement(
                self._party_address(caller, payer), self._party_address(caller, payee), amount
            ),)
        if len(payers) == 1 and payers[0][0] is None:
            return tuple(
                AssetMovement(caller, self._party_address(caller, party), amount)
                for party, amount in payees
            )
        if len(payees) == 1 and payees[0][0] is None:
            return tuple(
                AssetMovement(self._party_address(caller, party), caller, amount)
                for party, amount in payers
            )

        collected = tuple(
            AssetMovement(self._party_address(caller, party), self.address, amount)
            for party, amount in payers
        )
        paid_out = tuple(
            AssetMovement(self.address, self._party_address(caller, party), amount)
            for party, amount in payees
        )
        return collected + paid_out
