"""
helpers.py - Shared test helpers

Token construction, state capture for comparing two processors, and the
conservation assertion used throughout the suite.
"""

from typing import Any, Dict, Iterable

from multidelegate import VotesToken, BatchProcessor, MAX_AMOUNT


MINT_AMOUNT = 1_000_000

TOKEN_ADDRESS = "0x" + "e5" * 20
PROCESSOR_ADDRESS = "0x" + "a1" * 20
OPTIMIZED_PROCESSOR_ADDRESS = "0x" + "a2" * 20


def new_token(**balances: int) -> VotesToken:
    """Create a token and mint the given balances."""
    token = VotesToken("ENS", address=TOKEN_ADDRESS)
    for account, amount in balances.items():
        token.mint(account, amount)
    return token


def approve_all(token: VotesToken, spender: str, accounts: Iterable[str]) -> None:
    """Give spender an infinite allowance over every account."""
    for account in accounts:
        token.approve(account, spender, MAX_AMOUNT)


def delegation_state(processor: BatchProcessor, depositors: Iterable[str]) -> Dict[str, Any]:
    """
    Capture everything that must agree between two processors.

    Proxy addresses differ per processor, so proxy balances are keyed by
    delegate rather than by address.
    """
    depositors = sorted(depositors)
    delegates = sorted(processor.registry.delegates())
    return {
        'entries': {
            (a, d): processor.balance_of(a, d)
            for a in depositors for d in delegates
            if processor.balance_of(a, d)
        },
        'totals': {d: processor.get_balance_for_delegate(d) for d in delegates},
        'custodied': {
            d: processor.asset.balance_of(processor.registry.address_of(d))
            for d in delegates
        },
        'wallets': {a: processor.asset.balance_of(a) for a in depositors},
        'votes': {d: processor.asset.get_votes(d) for d in delegates},
        'delegates': delegates,
    }


def assert_conserved(processor: BatchProcessor) -> None:
    """Ledger totals match proxy balances and the token is self-consistent."""
    result = processor.verify_conservation()
    assert result['valid'], f"Conservation violated: {result['discrepancies']}"
    supply = processor.asset.verify_supply()
    assert supply['valid'], f"Token inconsistent: {supply}"
    assert processor.asset.balance_of(processor.address) == 0
