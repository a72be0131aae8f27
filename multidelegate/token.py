"""
token.py - In-memory Votable Token

VotesToken is the reference implementation of the VotableAsset protocol the
batch processor consumes. It keeps ERC20-style balances and allowances plus
vote delegation: every account may name one delegatee, and that delegatee's
voting weight tracks the account's balance through every transfer.

Key responsibilities:
    - Balances, allowances, transfer / transfer_from / approve
    - Vote delegation with weights that follow transfers and mints
    - Movement log (audit trail of every successful transfer)
    - snapshot() / restore() so callers can revert a failed batch
"""

from __future__ import annotations
from typing import Any, Dict, List, Optional, Tuple
import copy

from .core import (
    Address, Amount, AssetMovement,
    MAX_AMOUNT, ZERO_ADDRESS,
    AssetMovementFailed, AmountOverflow,
    validate_amount, validate_identifier,
)


class VotesToken:
    """
    Votable ERC20-style token held entirely in memory.

    An allowance of MAX_AMOUNT is treated as infinite and is never
    decremented by transfer_from.

    Thread Safety:
        Not thread-safe. The batch processor serializes its own calls.

    Example:
        token = VotesToken("ENS", address="0x" + "11" * 20)
        token.mint("alice", 1000)
        token.delegate("alice", "alice")
        token.get_votes("alice")   # 1000
    """

    def __init__(
        self,
        symbol: str,
        address: Address = "0x" + "e5" * 20,
        verbose: bool = False,
    ):
        """
        Create a token.

        Args:
            symbol: Ticker of the token
            address: Address of the token itself (its asset id)
            verbose: Print every transfer (default: False)
        """
        self.symbol = validate_identifier(symbol, "symbol")
        self.address = validate_identifier(address, "address")
        self.verbose = verbose
        self.total_supply: Amount = 0
        self.balances: Dict[Address, Amount] = {}
        self.allowances: Dict[Tuple[Address, Address], Amount] = {}
        self.delegates: Dict[Address, Address] = {}
        self.votes: Dict[Address, Amount] = {}
        self.movement_log: List[AssetMovement] = []

    # ========================================================================
    # READ-ONLY VIEWS
    # ========================================================================

    def balance_of(self, account: Address) -> Amount:
        """Return the balance of account (0 if it never held tokens)."""
        return self.balances.get(account, 0)

    def allowance(self, owner: Address, spender: Address) -> Amount:
        """Return how much spender may still move out of owner's balance."""
        return self.allowances.get((owner, spender), 0)

    def delegates_of(self, account: Address) -> Optional[Address]:
        """Return the account's delegatee, or None if it never delegated."""
        return self.delegates.get(account)

    def get_votes(self, account: Address) -> Amount:
        """Return the voting weight currently delegated to account."""
        return self.votes.get(account, 0)

    def verify_supply(self) -> Dict[str, Any]:
        """
        Verify that balances and votes are consistent with the total supply.

        Returns:
            Dict with keys:
            - 'valid': bool - True if both checks hold
            - 'total_supply': recorded supply
            - 'sum_of_balances': sum over all accounts
            - 'sum_of_votes': total voting weight
            - 'delegated_balance': sum of balances of accounts with a delegatee
        """
        sum_of_balances = sum(self.balances[a] for a in sorted(self.balances))
        sum_of_votes = sum(self.votes[a] for a in sorted(self.votes))
        delegated_balance = sum(
            self.balances.get(a, 0) for a in sorted(self.delegates)
        )
        return {
            'valid': sum_of_balances == self.total_supply and sum_of_votes == delegated_balance,
            'total_supply': self.total_supply,
            'sum_of_balances': sum_of_balances,
            'sum_of_votes': sum_of_votes,
            'delegated_balance': delegated_balance,
        }

    # ========================================================================
    # MUTATING OPERATIONS
    # ========================================================================

    def mint(self, recipient: Address, amount: Amount) -> None:
        """
        Create amount new tokens in recipient's balance.

        Raises:
            ValueError: If amount is not a positive integer
            AmountOverflow: If the total supply would exceed MAX_AMOUNT
        """
        validate_amount(amount)
        if amount == 0:
            raise ValueError("Mint amount must be greater than zero")
        if self.total_supply + amount > MAX_AMOUNT:
            raise AmountOverflow(f"{self.symbol} total supply would exceed 2**256 - 1")
        self.total_supply += amount
        self.balances[recipient] = self.balance_of(recipient) + amount
        self._move_votes(None, self.delegates.get(recipient), amount)

    def approve(self, owner: Address, spender: Address, amount: Amount) -> bool:
        """Set spender's allowance over owner's balance to amount."""
        validate_amount(amount)
        if owner == ZERO_ADDRESS or spender == ZERO_ADDRESS:
            raise AssetMovementFailed("approve to or from the zero address")
        self.allowances[(owner, spender)] = amount
        return True

    def delegate(self, account: Address, delegatee: Address) -> None:
        """Point account's voting weight at delegatee, moving existing weight."""
        old = self.delegates.get(account)
        self.delegates[account] = delegatee
        self._move_votes(old, delegatee, self.balance_of(account))

    def transfer(self, sender: Address, recipient: Address, amount: Amount) -> bool:
        """
        Move amount from sender to recipient.

        Raises:
            AssetMovementFailed: If sender's balance is too small or an
                                 endpoint is the zero address
        """
        validate_amount(amount)
        if sender == ZERO_ADDRESS or recipient == ZERO_ADDRESS:
            raise AssetMovementFailed("transfer to or from the zero address")
        sender_balance = self.balance_of(sender)
        if sender_balance < amount:
            raise AssetMovementFailed(
                f"{self.symbol}: transfer amount {amount} exceeds balance "
                f"{sender_balance} of {sender}"
            )

        self.balances[sender] = sender_balance - amount
        self.balances[recipient] = self.balance_of(recipient) + amount
        self._move_votes(self.delegates.get(sender), self.delegates.get(recipient), amount)

        self.movement_log.append(AssetMovement(sender, recipient, amount))
        if self.verbose:
            print(f"  {self.symbol} {amount}: {sender} → {recipient}")
        return True

    def transfer_from(
        self, spender: Address, owner: Address, recipient: Address, amount: Amount
    ) -> bool:
        """
        Move amount from owner to recipient on behalf of spender.

        Raises:
            AssetMovementFailed: If the allowance or owner's balance is too small
        """
        validate_amount(amount)
        current = self.allowance(owner, spender)
        if current < amount:
            raise AssetMovementFailed(
                f"{self.symbol}: insufficient allowance {current} for {spender} "
                f"to move {amount} from {owner}"
            )
        self.transfer(owner, recipient, amount)
        if current != MAX_AMOUNT:
            self.allowances[(owner, spender)] = current - amount
        return True

    def _move_votes(self, src: Optional[Address], dst: Optional[Address], amount: Amount) -> None:
        """Shift voting weight between delegatees (None means nobody)."""
        if src == dst or amount == 0:
            return
        if src is not None:
            remaining = self.votes.get(src, 0) - amount
            if remaining:
                self.votes[src] = remaining
            else:
                self.votes.pop(src, None)
        if dst is not None:
            self.votes[dst] = self.votes.get(dst, 0) + amount

    # ========================================================================
    # REVERT SUPPORT
    # ========================================================================

    def snapshot(self) -> Dict[str, Any]:
        """Capture the full mutable state of the token."""
        return {
            'total_supply': self.total_supply,
            'balances': dict(self.balances),
            'allowances': dict(self.allowances),
            'delegates': dict(self.delegates),
            'votes': dict(self.votes),
            'movement_log_length': len(self.movement_log),
        }

    def restore(self, state: Dict[str, Any]) -> None:
        """Return the token to a state captured by snapshot()."""
        self.total_supply = state['total_supply']
        self.balances = dict(state['balances'])
        self.allowances = dict(state['allowances'])
        self.delegates = dict(state['delegates'])
        self.votes = dict(state['votes'])
        del self.movement_log[state['movement_log_length']:]

    def clone(self) -> VotesToken:
        """Create a fully independent copy of this token."""
        cloned = VotesToken.__new__(VotesToken)
        cloned.symbol = self.symbol
        cloned.address = self.address
        cloned.verbose = self.verbose
        cloned.total_supply = self.total_supply
        cloned.balances = dict(self.balances)
        cloned.allowances = dict(self.allowances)
        cloned.delegates = dict(self.delegates)
        cloned.votes = dict(self.votes)
        cloned.movement_log = copy.copy(self.movement_log)
        return cloned

    def __repr__(self) -> str:
        return f"VotesToken({self.symbol}, supply={self.total_supply}, holders={len(self.balances)})"
