"""
proxy.py - Per-Delegate Custodial Proxies

One ProxyAccount exists per delegate. Asset held by the proxy is delegated
to that delegate, and the operator (the batch processor) may move it in and
out. ProxyRegistry derives every proxy address deterministically from
(operator, asset, delegate) and provisions proxies lazily on first use.

Proxies are never destroyed: a proxy whose balance drops to zero stays
registered and is reused by later deposits.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional

from .core import (
    Address, DelegateId, ProxyDeployed, VotableAsset,
    MAX_AMOUNT, ZERO_ADDRESS, DEFAULT_PROCESSOR_ADDRESS,
    ProxyProvisioningFailed,
    compute_proxy_address, validate_identifier,
)


@dataclass(frozen=True, slots=True)
class ProxyAccount:
    """
    Handle to the custodial account of one delegate.

    Attributes:
        delegate: Delegate the custodied asset votes for
        address: Deterministic address of the account
    """
    delegate: DelegateId
    address: Address

    def balance(self, asset: VotableAsset) -> int:
        """Return the asset balance custodied by this proxy."""
        return asset.balance_of(self.address)


class ProxyRegistry:
    """
    Deterministic registry of per-delegate proxies.

    ensure() provisions a proxy the first time a delegate is used: the new
    account approves the operator for MAX_AMOUNT and delegates its voting
    weight to the delegate. Later calls return the same handle and have no
    side effects.
    """

    def __init__(
        self,
        asset: VotableAsset,
        operator: Address = DEFAULT_PROCESSOR_ADDRESS,
    ):
        """
        Args:
            asset: The underlying votable asset
            operator: Account allowed to move asset out of every proxy
        """
        self.asset = asset
        self.operator = validate_identifier(operator, "operator")
        self._proxies: Dict[DelegateId, ProxyAccount] = {}
        self._by_address: Dict[Address, DelegateId] = {}
        self.events: List[ProxyDeployed] = []

    def address_of(self, delegate_id: DelegateId) -> Address:
        """Return the proxy address for delegate_id, provisioned or not."""
        return compute_proxy_address(self.asset.address, delegate_id, self.operator)

    def exists(self, delegate_id: DelegateId) -> bool:
        return delegate_id in self._proxies

    def get(self, delegate_id: DelegateId) -> Optional[ProxyAccount]:
        return self._proxies.get(delegate_id)

    def delegates(self) -> List[DelegateId]:
        """Delegates with a provisioned proxy, in provisioning order."""
        return list(self._proxies)

    def __contains__(self, delegate_id: object) -> bool:
        return delegate_id in self._proxies

    def __len__(self) -> int:
        return len(self._proxies)

    def __iter__(self) -> Iterator[ProxyAccount]:
        return iter(self._proxies.values())

    def ensure(self, delegate_id: DelegateId) -> ProxyAccount:
        """
        Return the proxy for delegate_id, provisioning it on first use.

        Raises:
            ProxyProvisioningFailed: If the derived address is reserved or
                                     already bound to another delegate
        """
        proxy = self._proxies.get(delegate_id)
        if proxy is not None:
            return proxy

        address = self.address_of(delegate_id)
        reserved = {ZERO_ADDRESS, self.asset.address, self.operator}
        if address in reserved:
            raise ProxyProvisioningFailed(
                f"Proxy address {address} for {delegate_id} collides with a reserved address"
            )
        if address in self._by_address:
            raise ProxyProvisioningFailed(
                f"Proxy address {address} for {delegate_id} already bound to "
                f"{self._by_address[address]}"
            )

        self.asset.approve(address, self.operator, MAX_AMOUNT)
        self.asset.delegate(address, delegate_id)

        proxy = ProxyAccount(delegate=delegate_id, address=address)
        self._proxies[delegate_id] = proxy
        self._by_address[address] = delegate_id
        self.events.append(ProxyDeployed(delegate_id, address))
        return proxy

    def clone(self) -> ProxyRegistry:
        """Create an independent copy sharing the same asset reference."""
        cloned = ProxyRegistry.__new__(ProxyRegistry)
        cloned.asset = self.asset
        cloned.operator = self.operator
        cloned._proxies = dict(self._proxies)
        cloned._by_address = dict(self._by_address)
        cloned.events = list(self.events)
        return cloned

    def snapshot(self) -> ProxyRegistry:
        return self.clone()

    def restore(self, snapshot: ProxyRegistry) -> None:
        """Put back the proxies and events captured by snapshot()."""
        self._proxies = dict(snapshot._proxies)
        self._by_address = dict(snapshot._by_address)
        self.events = list(snapshot.events)
