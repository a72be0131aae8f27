"""
Core types and pure functions for the multi-delegation system.

This module provides the foundational data structures and protocols:
1. Protocols: VotableAsset for the underlying token, DelegationView for read-only access
2. Immutable data structures: AllocationEntry, TransferInstruction, AssetMovement,
   ProxyDeployed, DelegationProcessed, BatchReceipt
3. Exceptions: MultiDelegateError (user errors) and FatalError (defects)
4. Type aliases: Address, DelegateId, Amount, Allocation
5. Pure helpers: amount validation, proxy address derivation, token ids

Nothing in this module mutates state.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
import hashlib
import re
from typing import (
    Any, Dict, FrozenSet, Optional, Protocol, Tuple, runtime_checkable
)


# ============================================================================
# CONSTANTS
# ============================================================================

# Amounts are unsigned 256-bit integers; anything larger is an overflow.
MAX_AMOUNT = 2 ** 256 - 1

ZERO_ADDRESS = "0x" + "00" * 20

# Address the batch processor acts as when none is configured.
DEFAULT_PROCESSOR_ADDRESS = "0x" + "00" * 19 + "de"

# Proxies are derived with a fixed salt, so the address only depends on the
# processor, the asset and the delegate.
PROXY_SALT = bytes(32)

# Stand-in for the custodial account's creation bytecode.
PROXY_INIT_CODE_PREFIX = b"multidelegate.ProxyAccount.v1"

_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")


# ============================================================================
# TYPE ALIASES
# ============================================================================

# 0x-prefixed, 40 hex digit account identifier.
Address = str

# Opaque delegate identifier (the delegate's address in practice).
DelegateId = str

# Unsigned integer amount of the underlying asset.
Amount = int

# Ordered (delegate, amount) pairs for one depositor.
Allocation = Tuple['AllocationEntry', ...]


# ============================================================================
# PROTOCOLS
# ============================================================================

@runtime_checkable
class VotableAsset(Protocol):
    """
    Interface of the underlying votable token consumed by the processor.

    The token's own accounting is assumed correct. snapshot() and restore()
    stand in for the host environment's revert: everything done to the asset
    after snapshot() is undone by restore().
    """

    address: Address

    def balance_of(self, account: Address) -> Amount:
        ...

    def allowance(self, owner: Address, spender: Address) -> Amount:
        ...

    def transfer(self, sender: Address, recipient: Address, amount: Amount) -> bool:
        ...

    def transfer_from(
        self, spender: Address, owner: Address, recipient: Address, amount: Amount
    ) -> bool:
        ...

    def approve(self, owner: Address, spender: Address, amount: Amount) -> bool:
        ...

    def delegate(self, account: Address, delegatee: Address) -> None:
        ...

    def get_votes(self, account: Address) -> Amount:
        ...

    def snapshot(self) -> Any:
        ...

    def restore(self, state: Any) -> None:
        ...


@runtime_checkable
class DelegationView(Protocol):
    """
    Read-only interface to delegation state.

    Functions that accept a DelegationView only query balances; they cannot
    change them. DelegationLedger implements this protocol.
    """

    def balance_of(self, depositor: Address, delegate: DelegateId) -> Amount:
        """Return the amount depositor routed to delegate (0 if none)."""
        ...

    def total_for(self, delegate: DelegateId) -> Amount:
        """Return the amount routed to delegate by all depositors."""
        ...


# ============================================================================
# ENUMS
# ============================================================================

class InstructionKind(Enum):
    """
    Classification of a transfer instruction.

    REDELEGATE: asset moves between two proxies.
    DEPOSIT: net inflow from the depositor's wallet into a proxy.
    WITHDRAW: net outflow from a proxy back to the depositor's wallet.
    """
    REDELEGATE = "redelegate"
    DEPOSIT = "deposit"
    WITHDRAW = "withdraw"


# ============================================================================
# EXCEPTIONS
# ============================================================================

class MultiDelegateError(Exception):
    """Base exception for errors caused by the caller's input or balances."""
    pass


class ArityMismatch(MultiDelegateError):
    """Raised when delegate and amount arrays disagree in length."""
    pass


class ZeroAmount(MultiDelegateError):
    """Raised when a target amount is zero."""
    pass


class DuplicateDelegate(MultiDelegateError):
    """Raised when the same delegate appears twice on one side of a call."""
    pass


class NothingToWithdraw(MultiDelegateError):
    """Raised when a source delegate holds nothing for the caller."""
    pass


class InsufficientBalance(MultiDelegateError):
    """Raised when a ledger debit exceeds the depositor's entry."""
    pass


class AssetMovementFailed(MultiDelegateError):
    """Raised when the underlying asset refuses a transfer (balance or allowance)."""
    pass


class Unauthorized(MultiDelegateError):
    """Raised when a restricted operation is called by someone other than the owner."""
    pass


class FatalError(Exception):
    """
    Base exception for unrecoverable defects.

    Deliberately not a MultiDelegateError: code handling user errors must
    never catch these.
    """
    pass


class ProxyProvisioningFailed(FatalError):
    """Raised when a derived proxy address collides with a reserved address."""
    pass


class AmountOverflow(FatalError):
    """Raised when an amount leaves the unsigned 256-bit range."""
    pass


# ============================================================================
# VALIDATION HELPERS
# ============================================================================

def validate_amount(amount: Any, what: str = "amount") -> Amount:
    """
    Check that amount is a non-negative integer within MAX_AMOUNT.

    Raises:
        ValueError: If amount is not an int (bools are rejected) or is negative
        AmountOverflow: If amount exceeds MAX_AMOUNT
    """
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise ValueError(f"{what} must be int, got {type(amount).__name__}")
    if amount < 0:
        raise ValueError(f"{what} must be non-negative, got {amount}")
    if amount > MAX_AMOUNT:
        raise AmountOverflow(f"{what} exceeds 2**256 - 1")
    return amount


def validate_identifier(value: Any, what: str = "identifier") -> str:
    """Check that value is a non-empty string."""
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"{what} cannot be empty")
    return value


def is_address(value: Any) -> bool:
    """Return True if value looks like a 0x-prefixed 20-byte hex address."""
    return isinstance(value, str) and bool(_ADDRESS_RE.match(value))


def _identifier_bytes(value: str) -> bytes:
    """Encode an identifier: raw bytes for hex addresses, utf-8 otherwise."""
    if is_address(value):
        return bytes.fromhex(value[2:])
    return value.encode()


def _encode_word(value: str) -> bytes:
    """Length-prefixed encoding so that distinct tuples never share bytes."""
    raw = _identifier_bytes(value)
    return len(raw).to_bytes(4, "big") + raw


def compute_proxy_address(
    asset_id: Address,
    delegate_id: DelegateId,
    operator: Address = DEFAULT_PROCESSOR_ADDRESS,
) -> Address:
    """
    Derive the address of the custodial proxy for (asset, delegate).

    CREATE2-style derivation: the last 20 bytes of
    sha256(0xff || operator || salt || sha256(init_code)), where the init
    code commits to the asset and the delegate. The result is computable
    before the proxy exists and never changes.

    Args:
        asset_id: Address (or identifier) of the underlying asset
        delegate_id: Delegate the proxy votes for
        operator: Address of the account that provisions proxies

    Returns:
        Lowercase 0x-prefixed address
    """
    validate_identifier(asset_id, "asset_id")
    validate_identifier(delegate_id, "delegate_id")
    init_code = PROXY_INIT_CODE_PREFIX + _encode_word(asset_id) + _encode_word(delegate_id)
    init_code_hash = hashlib.sha256(init_code).digest()
    preimage = b"\xff" + _identifier_bytes(operator) + PROXY_SALT + init_code_hash
    return "0x" + hashlib.sha256(preimage).digest()[-20:].hex()


def token_id_of(delegate_id: DelegateId) -> int:
    """
    Return the semi-fungible token id for a delegate.

    Hex addresses map to their integer value; any other identifier maps to
    the integer value of its sha256 digest.
    """
    validate_identifier(delegate_id, "delegate_id")
    if is_address(delegate_id):
        return int(delegate_id[2:], 16)
    return int.from_bytes(hashlib.sha256(delegate_id.encode()).digest(), "big")


# ============================================================================
# CORE DATA STRUCTURES
# ============================================================================

@dataclass(frozen=True, slots=True)
class AllocationEntry:
    """
    One (delegate, amount) pair of an allocation.

    Attributes:
        delegate: Delegate the amount is (or will be) routed to
        amount: Non-negative integer amount
    """
    delegate: DelegateId
    amount: Amount

    def __post_init__(self):
        validate_identifier(self.delegate, "AllocationEntry delegate")
        validate_amount(self.amount, "AllocationEntry amount")

    def __repr__(self) -> str:
        return f"({self.delegate}, {self.amount})"


@dataclass(frozen=True, slots=True)
class TransferInstruction:
    """
    One step of a redistribution plan.

    Attributes:
        from_delegate: Proxy the amount leaves, or None for the depositor's wallet
        to_delegate: Proxy the amount enters, or None for the depositor's wallet
        amount: Positive integer amount
    """
    from_delegate: Optional[DelegateId]
    to_delegate: Optional[DelegateId]
    amount: Amount

    def __post_init__(self):
        if self.from_delegate is None and self.to_delegate is None:
            raise ValueError("TransferInstruction needs a source or a destination")
        validate_amount(self.amount, "TransferInstruction amount")
        if self.amount == 0:
            raise ValueError("TransferInstruction amount cannot be zero")

    @property
    def kind(self) -> InstructionKind:
        if self.from_delegate is None:
            return InstructionKind.DEPOSIT
        if self.to_delegate is None:
            return InstructionKind.WITHDRAW
        return InstructionKind.REDELEGATE

    def as_tuple(self) -> Tuple[Optional[DelegateId], Optional[DelegateId], Amount]:
        return (self.from_delegate, self.to_delegate, self.amount)

    def __repr__(self) -> str:
        src = self.from_delegate if self.from_delegate is not None else "wallet"
        dst = self.to_delegate if self.to_delegate is not None else "wallet"
        return f"Transfer({self.amount}: {src}→{dst})"


@dataclass(frozen=True, slots=True)
class AssetMovement:
    """A single call moving the underlying asset between two accounts."""
    source: Address
    dest: Address
    amount: Amount

    def __repr__(self) -> str:
        return f"Movement({self.amount}: {self.source}→{self.dest})"


@dataclass(frozen=True, slots=True)
class ProxyDeployed:
    """Emitted once when the proxy for a delegate is provisioned."""
    delegate: DelegateId
    proxy_address: Address


@dataclass(frozen=True, slots=True)
class DelegationProcessed:
    """Emitted for every applied transfer instruction (None = depositor's wallet)."""
    from_delegate: Optional[DelegateId]
    to_delegate: Optional[DelegateId]
    amount: Amount


def _canonicalize(value: Any) -> str:
    """
    Produce a canonical string representation of a value for hashing.

    Dict keys are sorted; tuples and lists keep their order since
    instruction order is meaningful.
    """
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return f"N:{value}"
    if isinstance(value, str):
        return f"S:{value}"
    if isinstance(value, dict):
        items = sorted(value.items(), key=lambda kv: str(kv[0]))
        serialized = ",".join(f"{_canonicalize(k)}:{_canonicalize(v)}" for k, v in items)
        return f"{{{serialized}}}"
    if isinstance(value, (list, tuple)):
        serialized = ",".join(_canonicalize(item) for item in value)
        return f"[{serialized}]"
    if isinstance(value, TransferInstruction):
        return _canonicalize(value.as_tuple())
    return f"R:{repr(value)}"


def compute_intent_id(
    caller: Address,
    sources: Tuple[DelegateId, ...],
    targets: Tuple[DelegateId, ...],
    amounts: Tuple[Amount, ...],
    instructions: Tuple[TransferInstruction, ...],
) -> str:
    """
    Compute a deterministic content hash for a batch.

    Same caller, arguments and plan always produce the same id, so two
    receipts can be compared for the same intent across processors.
    """
    content = "|".join([
        f"caller:{caller}",
        f"sources:{_canonicalize(sources)}",
        f"targets:{_canonicalize(targets)}",
        f"amounts:{_canonicalize(amounts)}",
        f"plan:{_canonicalize(instructions)}",
    ])
    return hashlib.sha256(content.encode()).hexdigest()[:16]


@dataclass(frozen=True, slots=True)
class BatchReceipt:
    """
    An executed, immutable record of one delegate_multi call.

    Attributes:
        caller: Depositor that made the call
        sources: Delegates whose allocation was unwound
        targets: Delegates of the desired allocation
        amounts: Desired amount per target
        instructions: Redistribution plan that was applied
        movements: Asset movements actually issued
        provisioned: Delegates whose proxy was created by this call
        intent_id: Content hash of the call (caller, arguments, plan)
        exec_id: Unique execution identifier (processor + sequence)
        processor_name: Name of the processor that applied the call
        sequence_number: Monotonic sequence within the processor
    """
    caller: Address
    sources: Tuple[DelegateId, ...]
    targets: Tuple[DelegateId, ...]
    amounts: Tuple[Amount, ...]
    instructions: Tuple[TransferInstruction, ...]
    movements: Tuple[AssetMovement, ...]
    provisioned: Tuple[DelegateId, ...]
    intent_id: str
    exec_id: str
    processor_name: str
    sequence_number: int
    delegates_touched: Optional[FrozenSet[DelegateId]] = field(default=None)

    def __post_init__(self):
        if self.delegates_touched is None:
            touched = set()
            for ins in self.instructions:
                if ins.from_delegate is not None:
                    touched.add(ins.from_delegate)
                if ins.to_delegate is not None:
                    touched.add(ins.to_delegate)
            object.__setattr__(self, 'delegates_touched', frozenset(touched))

    def is_empty(self) -> bool:
        return not self.instructions

    def totals(self) -> Dict[str, Amount]:
        """Return deposited, withdrawn and redelegated totals for the call."""
        totals = {kind.value: 0 for kind in InstructionKind}
        for ins in self.instructions:
            totals[ins.kind.value] += ins.amount
        return totals

    def __repr__(self) -> str:
        w = 100  # Inner content width
        bar = "─" * w

        def pad(text: str) -> str:
            """Pad or truncate text to exactly w characters."""
            if len(text) > w:
                return text[:w-3] + "..."
            return text + " " * (w - len(text))

        lines = [
            "",
            f"┌{bar}┐",
            f"│{pad(' Batch: ' + self.exec_id)}│",
            f"├{bar}┤",
            f"│{pad('   intent_id   : ' + self.intent_id)}│",
            f"│{pad('   processor   : ' + self.processor_name)}│",
            f"│{pad('   sequence    : ' + str(self.sequence_number))}│",
            f"│{pad('   caller      : ' + self.caller)}│",
        ]
        if self.provisioned:
            lines.append(f"│{pad('   provisioned : ' + ', '.join(self.provisioned))}│")
        lines.append(f"├{bar}┤")
        lines.append(f"│{pad(' Instructions (' + str(len(self.instructions)) + '):')}│")
        for i, ins in enumerate(self.instructions):
            lines.append(f"│{pad(f'   [{i}] {ins!r}')}│")
        lines.append(f"├{bar}┤")
        lines.append(f"│{pad(' Asset movements (' + str(len(self.movements)) + '):')}│")
        for i, mv in enumerate(self.movements):
            lines.append(f"│{pad(f'   [{i}] {mv.amount}: {mv.source} → {mv.dest}')}│")
        lines.append(f"└{bar}┘")
        return "\n".join(lines)
