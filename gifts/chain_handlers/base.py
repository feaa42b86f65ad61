"""
Base chain handler interface.
"""
from abc import ABC, abstractmethod
from typing import Dict, Any, Optional
from dataclasses import dataclass


@dataclass
class SubmissionResult:
    """Result of submitting a transaction to a network."""
    success: bool
    transaction_hash: Optional[str] = None
    error_reason: Optional[str] = None
    # True only when the failure happened before anything was broadcast,
    # so resubmitting cannot move funds twice.
    retryable: bool = False
    details: Optional[Dict[str, Any]] = None


@dataclass
class ReceiptResult:
    """Confirmation state of a previously submitted transaction."""
    PENDING = 'pending'
    CONFIRMED = 'confirmed'
    REVERTED = 'reverted'

    state: str
    transaction_hash: str
    error_reason: Optional[str] = None
    details: Optional[Dict[str, Any]] = None

    @property
    def confirmed(self) -> bool:
        return self.state == self.CONFIRMED

    @property
    def reverted(self) -> bool:
        return self.state == self.REVERTED


class ChainHandler(ABC):
    """
    Abstract base class for settlement network handlers.
    Each network (Ethereum Sepolia, Base Sepolia, Arc, ...) is driven through
    this interface by the transfer orchestrator and the escrow manager.
    """

    def __init__(self, config: Dict[str, Any]):
        """
        Initialize the chain handler.

        Args:
            config: Network configuration (RPC URL, contract addresses,
                holding account signer, attestation domain)
        """
        self.config = config

    @property
    @abstractmethod
    def chain_name(self) -> str:
        """Return the network name (e.g., 'arc-testnet')."""

    @property
    def domain(self) -> int:
        """Attestation-service domain id of this network."""
        return int(self.config.get('domain', 0))

    @property
    def holding_address(self) -> str:
        """Address of the holding account that escrows gift funds."""
        return self.config.get('signer_address', '')

    def is_configured(self) -> bool:
        return bool(
            self.config.get('rpc_url')
            and self.config.get('signer_private_key')
            and self.config.get('signer_address')
        )

    @abstractmethod
    def validate_address(self, address: str) -> bool:
        """
        Validate if the address format is correct for this network.
        """

    @abstractmethod
    def get_native_balance(self, address: str) -> int:
        """Native gas token balance in its smallest unit."""

    @abstractmethod
    def get_token_balance(self, address: str) -> int:
        """Stable-currency balance in base units."""

    @abstractmethod
    def submit_transfer(self, recipient: str, amount: int) -> SubmissionResult:
        """
        Same-network transfer of ``amount`` from the holding account.
        """

    @abstractmethod
    def submit_burn(
        self,
        amount: int,
        destination_domain: int,
        recipient: str,
    ) -> SubmissionResult:
        """
        Burn ``amount`` on this network for minting on ``destination_domain``.
        """

    @abstractmethod
    def submit_mint(self, message: str, attestation: str) -> SubmissionResult:
        """
        Mint on this network using an attested burn message.
        """

    @abstractmethod
    def get_receipt(self, tx_hash: str) -> ReceiptResult:
        """
        Look up the confirmation state of a submitted transaction.
        """

