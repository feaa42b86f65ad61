"""
Builds the chain handler for a settlement network.
"""
from typing import Dict, Any, List, Optional, Type
from .base import ChainHandler
from .evm_chain import EvmChainHandler


class ChainHandlerFactory:
    """Maps settlement network names to handler classes."""

    _handlers: Dict[str, Type[ChainHandler]] = {
        'ethereum-sepolia': EvmChainHandler,
        'base-sepolia': EvmChainHandler,
        'arc-testnet': EvmChainHandler,
    }

    @staticmethod
    def _key(network: str) -> str:
        return network.lower().strip()

    @classmethod
    def create(cls, network: str, config: Optional[Dict[str, Any]] = None) -> ChainHandler:
        """
        Build a handler for ``network`` from an explicit network config.

        The config carries the RPC endpoint, the USDC and CCTP contract
        addresses, the holding-account signer and the attestation domain.
        The network name is injected so handlers can log and report it.

        Raises:
            ValueError: the network has no registered handler
        """
        key = cls._key(network)
        handler_class = cls._handlers.get(key)
        if handler_class is None:
            raise ValueError(
                f"Unsupported network: {network}. "
                f"Known networks: {', '.join(sorted(cls._handlers))}"
            )
        return handler_class({'network': key, **(config or {})})

    @classmethod
    def from_settings(cls, network: str, networks: Optional[Dict[str, Dict[str, Any]]] = None) -> ChainHandler:
        """Build a handler from the ``GIFTS_NETWORKS`` entry for ``network``."""
        if networks is None:
            from django.conf import settings
            networks = settings.GIFTS_NETWORKS
        return cls.create(network, networks.get(cls._key(network), {}))

    @classmethod
    def register(cls, network: str, handler_class: Type[ChainHandler]) -> None:
        """Make another network settleable through ``handler_class``."""
        cls._handlers[cls._key(network)] = handler_class

    @classmethod
    def get_supported_networks(cls) -> List[str]:
        return list(cls._handlers)
