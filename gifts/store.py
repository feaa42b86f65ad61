"""
Gift record store.

The store is the only writer of ``Gift.status``. Every status change goes
through ``transition``, a compare-and-swap on the persisted status column, so
two workers racing on the same gift cannot both win.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Iterable, List, Optional

from django.core.exceptions import ValidationError
from django.db import IntegrityError, transaction
from django.db.models import Q
from django.utils import timezone
from loguru import logger

from gifts.credentials import CredentialIssuanceError, hash_secret, issue_credentials
from gifts.errors import (
    GiftNotFound,
    GiftValidationError,
    InvalidTransition,
    TransitionConflict,
)
from gifts.models import Gift

Status = Gift.Status

# Forward edges of the lifecycle graph. ``expired`` and ``failed`` are added
# below for every non-terminal status.
_FORWARD = {
    Status.PENDING: {Status.ESCROW_FUNDED},
    Status.ESCROW_FUNDED: {Status.CLAIMED},
    Status.CLAIMED: {Status.TRANSFERRING},
    Status.TRANSFERRING: {Status.COMPLETED},
}

ALLOWED_TRANSITIONS = {
    status: set(targets) | {Status.FAILED}
    for status, targets in _FORWARD.items()
}
for _status in Gift.EXPIRABLE_STATUSES:
    ALLOWED_TRANSITIONS[_status].add(Status.EXPIRED)
# Operator-triggered settlement retry; see GiftCoordinator.retry_settlement.
ALLOWED_TRANSITIONS[Status.FAILED] = {Status.TRANSFERRING}

# Only columns the lifecycle is allowed to touch alongside a status change.
MUTABLE_FIELDS = {
    'recipient_address',
    'claimed_at',
    'completed_at',
    'failure_reason',
    'transfer',
    'transfer_id',
}


@dataclass
class GiftInput:
    amount: int
    source_network: str
    destination_network: str
    sender_ref: str = ''
    sender_wallet_address: str = ''
    recipient_handle: str = ''
    recipient_email: str = ''
    recipient_name: str = ''
    message: str = ''
    expires_at: Optional[datetime] = None
    unlock_at: Optional[datetime] = None
    with_secret: bool = True
    batch_id: Optional[str] = None
    schedule_id: Optional[str] = None


@dataclass
class CreatedGift:
    gift: Gift
    # Plaintext secret; returned once and never stored.
    claim_secret: Optional[str]


def normalize_handle(handle: Optional[str]) -> str:
    return (handle or '').strip().lstrip('@')


class GiftStore:
    MAX_CODE_ATTEMPTS = 3

    def __init__(self, clock: Callable[[], datetime] = timezone.now):
        self.clock = clock

    def create(self, data: GiftInput) -> CreatedGift:
        if data.amount <= 0:
            raise GiftValidationError('Amount must be greater than zero.')
        handle = normalize_handle(data.recipient_handle)
        email = (data.recipient_email or '').strip()
        if not handle and not email:
            raise GiftValidationError(
                'A recipient handle or email is required.')

        for attempt in range(1, self.MAX_CODE_ATTEMPTS + 1):
            credentials = issue_credentials(with_secret=data.with_secret)
            secret_hash = (
                hash_secret(credentials.claim_secret)
                if credentials.claim_secret else None
            )
            try:
                with transaction.atomic():
                    gift = Gift.objects.create(
                        claim_code=credentials.claim_code,
                        claim_secret_hash=secret_hash,
                        sender_ref=data.sender_ref,
                        sender_wallet_address=data.sender_wallet_address,
                        recipient_handle=handle,
                        recipient_email=email,
                        recipient_name=data.recipient_name,
                        amount=data.amount,
                        source_network=data.source_network,
                        destination_network=data.destination_network,
                        message=data.message,
                        status=Status.PENDING,
                        condition_type=(
                            Gift.Condition.TIME_LOCKED if data.unlock_at
                            else Gift.Condition.NONE
                        ),
                        unlock_at=data.unlock_at,
                        expires_at=data.expires_at,
                        batch_id=data.batch_id,
                        schedule_id=data.schedule_id,
                        created_at=self.clock(),
                    )
            except IntegrityError:
                # 128-bit codes do not collide in practice; retry anyway
                # rather than surface a database error.
                logger.warning('claim code collision on attempt {}', attempt)
                continue

            logger.info(
                'gift created: id={} code={} amount={} {}->{}',
                gift.id, gift.claim_code, gift.amount,
                gift.source_network, gift.destination_network,
            )
            return CreatedGift(gift=gift, claim_secret=credentials.claim_secret)

        raise CredentialIssuanceError('Unable to allocate a unique claim code.')

    def get(self, gift_id) -> Gift:
        try:
            return Gift.objects.select_related('transfer').get(pk=gift_id)
        except (Gift.DoesNotExist, ValidationError, ValueError) as exc:
            raise GiftNotFound('Gift not found.') from exc

    def lookup(self, claim_code: str) -> Gift:
        """Fetch by claim code, applying lazy expiry.

        Unlike ``get_by_claim_code`` this returns expired gifts so the caller
        can report ``expired`` instead of ``not found``.
        """
        try:
            gift = Gift.objects.select_related('transfer').get(claim_code=claim_code)
        except Gift.DoesNotExist as exc:
            raise GiftNotFound('Gift not found.') from exc
        return self.expire_if_due(gift)

    def get_by_claim_code(self, claim_code: str) -> Gift:
        gift = self.lookup(claim_code)
        if gift.status == Status.EXPIRED:
            raise GiftNotFound('Gift not found.')
        return gift

    def expire_if_due(self, gift: Gift) -> Gift:
        if gift.status not in Gift.EXPIRABLE_STATUSES:
            return gift
        if not gift.is_expired_at(self.clock()):
            return gift
        try:
            return self.transition(gift.id, gift.status, Status.EXPIRED)
        except TransitionConflict:
            # Someone else moved it first; report what is stored now.
            return Gift.objects.select_related('transfer').get(pk=gift.id)

    def transition(self, gift_id, from_status: str, to_status: str, **mutations) -> Gift:
        """Atomically move a gift from ``from_status`` to ``to_status``.

        Raises TransitionConflict when the stored status is not
        ``from_status``; the stored row is left untouched in that case.
        """
        if to_status not in ALLOWED_TRANSITIONS.get(from_status, set()):
            raise InvalidTransition(
                f'Transition {from_status} -> {to_status} is not allowed.')
        unknown = set(mutations) - MUTABLE_FIELDS
        if unknown:
            raise InvalidTransition(
                f'Fields {sorted(unknown)} cannot change with a transition.')

        now = self.clock()
        updated = Gift.objects.filter(pk=gift_id, status=from_status).update(
            status=to_status,
            updated_at=now,
            **mutations,
        )
        if updated != 1:
            actual = (
                Gift.objects.filter(pk=gift_id)
                .values_list('status', flat=True)
                .first()
            )
            if actual is None:
                raise GiftNotFound('Gift not found.')
            raise TransitionConflict(gift_id, from_status, actual)

        logger.info('gift {} {} -> {}', gift_id, from_status, to_status)
        return Gift.objects.select_related('transfer').get(pk=gift_id)

    def attach_transfer(self, gift_id, transfer) -> Gift:
        """Point a transferring gift that has no Transfer yet at ``transfer``."""
        updated = Gift.objects.filter(
            pk=gift_id, status=Status.TRANSFERRING, transfer__isnull=True,
        ).update(transfer=transfer, updated_at=self.clock())
        if updated != 1:
            actual = (
                Gift.objects.filter(pk=gift_id)
                .values_list('status', flat=True)
                .first()
            )
            raise TransitionConflict(gift_id, Status.TRANSFERRING, actual)
        logger.info('gift {} attached to transfer {}', gift_id, transfer.id)
        return Gift.objects.select_related('transfer').get(pk=gift_id)

    def fail(self, gift: Gift, reason: str) -> Gift:
        """Move any non-terminal gift to ``failed``, persisting the reason."""
        current = gift
        while not current.is_terminal:
            try:
                return self.transition(
                    current.id, current.status, Status.FAILED,
                    failure_reason=reason[:2000],
                )
            except TransitionConflict:
                current = Gift.objects.get(pk=current.id)
        return current

    def for_recipient(self, handle: str = '', email: str = '') -> List[Gift]:
        handle = normalize_handle(handle)
        email = (email or '').strip()
        if not handle and not email:
            return []
        match = Q()
        if handle:
            match |= Q(recipient_handle__iexact=handle)
        if email:
            match |= Q(recipient_email__iexact=email)
        gifts = Gift.objects.filter(match).exclude(status__in=Gift.TERMINAL_STATUSES)
        live = []
        for gift in gifts:
            gift = self.expire_if_due(gift)
            if not gift.is_terminal:
                live.append(gift)
        return live

    def for_sender(self, sender_ref: str) -> Iterable[Gift]:
        return Gift.objects.filter(sender_ref=sender_ref).select_related('transfer')

    def sweep_expired(self) -> int:
        """Expire overdue gifts; returns how many were moved."""
        now = self.clock()
        overdue = Gift.objects.filter(
            status__in=Gift.EXPIRABLE_STATUSES,
            expires_at__isnull=False,
            expires_at__lte=now,
        ).values_list('id', 'status')
        expired = 0
        for gift_id, status in overdue:
            try:
                self.transition(gift_id, status, Status.EXPIRED)
                expired += 1
            except TransitionConflict:
                continue
        if expired:
            logger.info('expiry sweep moved {} gifts to expired', expired)
        return expired
