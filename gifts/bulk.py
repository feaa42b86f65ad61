"""
Bulk gifts: one request fans out into independent gifts sharing a batch.
"""
import secrets
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from django.db import IntegrityError
from loguru import logger

from gifts.coordinator import GiftCoordinator, GiftCreated
from gifts.errors import GiftNotFound
from gifts.models import Gift, GiftBatch
from gifts.store import GiftInput

BATCH_CODE_ALPHABET = 'ABCDEFGHJKLMNPQRSTUVWXYZ23456789'
BATCH_CODE_LENGTH = 8


@dataclass
class BatchRecipient:
    first_name: str = ''
    last_name: str = ''
    email: str = ''
    handle: str = ''

    @property
    def display_name(self) -> str:
        return f'{self.first_name} {self.last_name}'.strip()


@dataclass
class BatchCreated:
    batch: GiftBatch
    gifts: List[GiftCreated] = field(default_factory=list)


def new_batch_code() -> str:
    return ''.join(secrets.choice(BATCH_CODE_ALPHABET) for _ in range(BATCH_CODE_LENGTH))


def aggregate_status(statuses: List[str]) -> str:
    """Batch status derived from its gifts; never stored."""
    if not statuses:
        return 'pending'
    terminal = set(Gift.TERMINAL_STATUSES)
    if all(status in terminal for status in statuses):
        return 'completed'
    return 'processing'


class BulkGiftService:

    def __init__(self, coordinator: GiftCoordinator):
        self.coordinator = coordinator

    def create_batch(
        self,
        recipients: List[BatchRecipient],
        amount: int,
        source_network: str,
        destination_network: str,
        sender_ref: str = '',
        sender_name: str = '',
        company_name: str = '',
        sender_wallet_address: str = '',
        message: str = '',
        expires_at: Optional[datetime] = None,
    ) -> BatchCreated:
        batch = self._new_batch(
            sender_ref=sender_ref,
            sender_name=sender_name,
            company_name=company_name,
            sender_wallet_address=sender_wallet_address,
            amount=amount,
            source_network=source_network,
            destination_network=destination_network,
            message=message,
            expires_at=expires_at,
        )
        created = BatchCreated(batch=batch)
        for recipient in recipients:
            created.gifts.append(self.coordinator.create_gift(GiftInput(
                amount=amount,
                source_network=source_network,
                destination_network=destination_network,
                sender_ref=sender_ref,
                sender_wallet_address=sender_wallet_address,
                recipient_handle=recipient.handle,
                recipient_email=recipient.email,
                recipient_name=recipient.display_name,
                message=message,
                expires_at=expires_at,
                batch_id=batch.id,
            )))
        logger.info('batch {} created with {} gifts', batch.batch_code, len(created.gifts))
        return created

    def _new_batch(self, **fields) -> GiftBatch:
        for _ in range(3):
            try:
                return GiftBatch.objects.create(batch_code=new_batch_code(), **fields)
            except IntegrityError:
                continue
        return GiftBatch.objects.create(
            batch_code=new_batch_code() + secrets.token_hex(2).upper(), **fields)

    def get_batch(self, batch_code: str) -> GiftBatch:
        try:
            return GiftBatch.objects.get(batch_code=batch_code.upper())
        except GiftBatch.DoesNotExist as exc:
            raise GiftNotFound('Batch not found.') from exc

    def batch_status(self, batch: GiftBatch) -> str:
        store = self.coordinator.store
        statuses = [store.expire_if_due(gift).status for gift in batch.gifts.all()]
        return aggregate_status(statuses)

    def for_sender(self, sender_ref: str) -> List[GiftBatch]:
        return list(GiftBatch.objects.filter(sender_ref=sender_ref))

    def find_for_email(self, batch_code: str, email: str) -> Gift:
        """A team member's own gift inside a batch."""
        batch = self.get_batch(batch_code)
        gift = batch.gifts.filter(recipient_email__iexact=(email or '').strip()).first()
        if gift is None:
            raise GiftNotFound('Gift not found.')
        return gift
