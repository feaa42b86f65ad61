"""
Escrow manager.

Decides whether a gift is funded and whether it may be settled. It never
moves funds itself; only the transfer orchestrator debits the holding
account.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from django.utils import timezone
from loguru import logger

from gifts.chain_handlers import ChainHandler, ChainHandlerFactory
from gifts.errors import InvalidTransition, NotConfigured, UpstreamError
from gifts.models import Gift


@dataclass(frozen=True)
class ReleaseToken:
    """Authorization to settle one claimed gift, and what to settle."""
    gift_id: str
    amount: int
    source_network: str
    destination_network: str
    recipient_address: str
    issued_at: datetime


class EscrowManager:

    def __init__(
        self,
        handlers: Callable[[str], ChainHandler] = ChainHandlerFactory.from_settings,
        clock: Callable[[], datetime] = timezone.now,
    ):
        self.handlers = handlers
        self.clock = clock

    def _handler(self, network: str) -> ChainHandler:
        try:
            handler = self.handlers(network)
        except ValueError as exc:
            raise NotConfigured(str(exc)) from exc
        if not handler.is_configured():
            raise NotConfigured(f'No holding account configured for {network}.')
        return handler

    def holding_balance(self, network: str) -> int:
        handler = self._handler(network)
        try:
            return handler.get_token_balance(handler.holding_address)
        except NotConfigured:
            raise
        except Exception as exc:
            raise UpstreamError(f'Balance query on {network} failed: {exc}') from exc

    def confirm_funded(self, gift: Gift) -> bool:
        """Point-in-time check that the holding account covers the gift.

        This is not a reservation: two gifts against the same holding account
        can both pass before either settles. Settlement itself fails without
        a partial debit if the balance is gone by then.
        """
        balance = self.holding_balance(gift.source_network)
        funded = balance >= gift.amount
        logger.info(
            'escrow check for gift {} on {}: balance={} required={} funded={}',
            gift.id, gift.source_network, balance, gift.amount, funded,
        )
        return funded

    def release_authorization(self, gift: Gift) -> ReleaseToken:
        # ``failed`` is accepted for operator-triggered settlement retries.
        releasable = (Gift.Status.CLAIMED, Gift.Status.FAILED)
        if gift.status not in releasable or not gift.recipient_address:
            raise InvalidTransition(
                f'Gift {gift.id} is {gift.status}; only claimed gifts can be released.')
        return ReleaseToken(
            gift_id=str(gift.id),
            amount=gift.amount,
            source_network=gift.source_network,
            destination_network=gift.destination_network,
            recipient_address=gift.recipient_address,
            issued_at=self.clock(),
        )
