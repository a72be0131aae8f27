"""
multidelegate - Batched Multi-Delegation of Voting Power

Split a token holder's voting power across many delegates in one call, and
rebalance it later without the tokens passing back through the holder's
wallet.

Usage:
    from multidelegate import VotesToken, BatchProcessor

    token = VotesToken("ENS")
    processor = BatchProcessor(token, verbose=False)

    token.mint("alice", 1000)
    token.approve("alice", processor.address, 1000)

    # Delegate 600 to bob and 400 to carol
    processor.delegate_multi("alice", [], ["bob", "carol"], [600, 400])

    # Move everything bob holds for alice over to dave
    processor.delegate_multi("alice", ["bob"], ["dave"], [600])

    processor.get_balance_for_delegate("dave")   # 600
    token.get_votes("dave")                      # 600
"""

# Core types
from .core import (
    VotableAsset,
    DelegationView,
    AllocationEntry,
    TransferInstruction,
    InstructionKind,
    AssetMovement,
    ProxyDeployed,
    DelegationProcessed,
    BatchReceipt,
    MultiDelegateError,
    ArityMismatch,
    ZeroAmount,
    DuplicateDelegate,
    NothingToWithdraw,
    InsufficientBalance,
    AssetMovementFailed,
    Unauthorized,
    FatalError,
    ProxyProvisioningFailed,
    AmountOverflow,
    compute_proxy_address,
    token_id_of,
    MAX_AMOUNT,
    ZERO_ADDRESS,
    DEFAULT_PROCESSOR_ADDRESS,
)

# Underlying asset
from .token import VotesToken

# Proxies
from .proxy import ProxyAccount, ProxyRegistry

# Ledger
from .delegation_ledger import DelegationLedger

# Redistribution
from .redistribution import (
    redistribute,
    net_proxy_deltas,
    source_allocation_from,
    as_allocation,
    allocation_total,
)

# Batch processing
from .batch import BatchProcessor, OptimizedBatchProcessor

__all__ = [
    # Core
    'VotableAsset', 'DelegationView',
    'AllocationEntry', 'TransferInstruction', 'InstructionKind', 'AssetMovement',
    'ProxyDeployed', 'DelegationProcessed', 'BatchReceipt',
    'MultiDelegateError', 'ArityMismatch', 'ZeroAmount', 'DuplicateDelegate',
    'NothingToWithdraw', 'InsufficientBalance', 'AssetMovementFailed', 'Unauthorized',
    'FatalError', 'ProxyProvisioningFailed', 'AmountOverflow',
    'compute_proxy_address', 'token_id_of',
    'MAX_AMOUNT', 'ZERO_ADDRESS', 'DEFAULT_PROCESSOR_ADDRESS',
    # Asset
    'VotesToken',
    # Proxies
    'ProxyAccount', 'ProxyRegistry',
    # Ledger
    'DelegationLedger',
    # Redistribution
    'redistribute', 'net_proxy_deltas', 'source_allocation_from', 'as_allocation', 'allocation_total',
    # Batch processing
    'BatchProcessor', 'OptimizedBatchProcessor',
]

__version__ = '1.0.0'
