"""
Example: Splitting and rebalancing voting power across delegates.

A token holder delegates their whole balance to one delegate, moves it to
another without the tokens ever returning to their wallet, splits it three
ways, and finally takes part of it back. The optimized processor then
replays the same calls to show that it reaches the same state with fewer
asset movements.
"""

from multidelegate import (
    VotesToken, BatchProcessor, OptimizedBatchProcessor,
    NothingToWithdraw, MAX_AMOUNT,
)


SUPPLY = 1_000_000
TOKEN_ADDRESS = "0x" + "e5" * 20

CALLS = [
    ("deployer", [], ["alice"], [SUPPLY]),
    ("deployer", ["alice"], ["charlie"], [SUPPLY]),
    ("deployer", ["charlie"], ["alice", "bob", "charlie"], [200_000, 300_000, 500_000]),
    ("deployer", ["alice", "charlie"], ["dave"], [400_000]),
]


def show_votes(token, processor, delegates):
    for d in delegates:
        proxy = processor.retrieve_proxy_contract_address(token.address, d)
        print(f"  {d:8s} votes={token.get_votes(d):>9,}  proxy {proxy} holds {token.balance_of(proxy):>9,}")
    print(f"  wallet   {token.balance_of('deployer'):>9,}")


def main():
    print("=" * 80)
    print("MULTI-DELEGATION - Split and Rebalance Example")
    print("=" * 80)
    print()

    token = VotesToken("ENS", address=TOKEN_ADDRESS)
    token.mint("deployer", SUPPLY)

    processor = BatchProcessor(token, owner="deployer", uri="https://meta.example/{id}.json")
    token.approve("deployer", processor.address, MAX_AMOUNT)

    alice_proxy = processor.retrieve_proxy_contract_address(token.address, "alice")
    print(f"alice's proxy is known before it exists: {alice_proxy}")
    print()

    print("Example 1: Delegate everything to alice")
    print("-" * 80)
    processor.delegate_multi(*CALLS[0])
    show_votes(token, processor, ["alice"])
    print()

    print("Example 2: Move alice's share to charlie (no wallet round trip)")
    print("-" * 80)
    processor.delegate_multi(*CALLS[1])
    show_votes(token, processor, ["alice", "charlie"])
    print()

    print("Example 3: Split charlie's share three ways")
    print("-" * 80)
    processor.delegate_multi(*CALLS[2])
    show_votes(token, processor, ["alice", "bob", "charlie"])
    print()

    print("Example 4: Fold alice and charlie into dave, keep the surplus")
    print("-" * 80)
    processor.delegate_multi(*CALLS[3])
    show_votes(token, processor, ["alice", "bob", "charlie", "dave"])
    print()

    print("Example 5: A rejected call changes nothing")
    print("-" * 80)
    try:
        processor.delegate_multi("deployer", ["bob", "alice"], [], [])
    except NothingToWithdraw:
        pass
    show_votes(token, processor, ["alice", "bob"])
    print()

    print("Conservation check:", processor.verify_conservation())
    print("Token supply check:", token.verify_supply())
    print("Metadata for dave:", processor.uri("dave"))
    print()

    print("=" * 80)
    print("OPTIMIZED PROCESSOR - Same calls, netted movements")
    print("=" * 80)

    optimized_token = VotesToken("ENS", address=TOKEN_ADDRESS)
    optimized_token.mint("deployer", SUPPLY)
    optimized = OptimizedBatchProcessor(optimized_token, address="0x" + "0d" * 20, verbose=False)
    optimized_token.approve("deployer", optimized.address, MAX_AMOUNT)

    print(f"{'call':>4}  {'plain':>6}  {'optimized':>9}")
    for i, (args, plain_receipt) in enumerate(zip(CALLS, processor.batch_log)):
        receipt = optimized.delegate_multi(*args)
        print(f"{i:>4}  {len(plain_receipt.movements):>6}  {len(receipt.movements):>9}")
    print()
    show_votes(optimized_token, optimized, ["alice", "bob", "charlie", "dave"])


if __name__ == "__main__":
    main()
