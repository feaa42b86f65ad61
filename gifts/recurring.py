"""
Recurring gifts.

A scheduler tick calls ``run_due``; each due schedule produces one ordinary
gift. A failed payment is recorded on the schedule and never blocks the
next tick.
"""
from datetime import datetime, timedelta
from typing import Optional

from django.db import IntegrityError
from loguru import logger

from gifts.coordinator import GiftCoordinator
from gifts.errors import GiftError, GiftNotFound, GiftValidationError, ScheduleClosed
from gifts.models import RecurringSchedule
from gifts.store import GiftInput, normalize_handle

Status = RecurringSchedule.Status


class RecurringGiftService:

    def __init__(self, coordinator: GiftCoordinator):
        self.coordinator = coordinator

    @property
    def clock(self):
        return self.coordinator.clock

    def create_schedule(
        self,
        schedule_id: str,
        amount: int,
        source_network: str,
        destination_network: str,
        interval_seconds: int,
        sender_ref: str = '',
        sender_wallet_address: str = '',
        recipient_handle: str = '',
        recipient_email: str = '',
        message: str = '',
        start_at: Optional[datetime] = None,
        end_at: Optional[datetime] = None,
        max_payments: Optional[int] = None,
        with_secret: bool = True,
    ) -> RecurringSchedule:
        if amount <= 0:
            raise GiftValidationError('Amount must be greater than zero.')
        if interval_seconds <= 0:
            raise GiftValidationError('intervalSeconds must be positive.')
        handle = normalize_handle(recipient_handle)
        if not handle and not recipient_email:
            raise GiftValidationError('A recipient handle or email is required.')
        if max_payments is None and end_at is None:
            raise GiftValidationError('Either maxPayments or endAt is required.')
        start_at = start_at or self.clock()
        if end_at is not None and end_at <= start_at:
            raise GiftValidationError('endAt must be after the first payment.')

        try:
            schedule = RecurringSchedule.objects.create(
                schedule_id=schedule_id,
                sender_ref=sender_ref,
                sender_wallet_address=sender_wallet_address,
                recipient_handle=handle,
                recipient_email=recipient_email or '',
                amount=amount,
                source_network=source_network,
                destination_network=destination_network,
                message=message or '',
                with_secret=with_secret,
                interval_seconds=interval_seconds,
                next_run_at=start_at,
                end_at=end_at,
                remaining_payments=max_payments,
            )
        except IntegrityError as exc:
            raise GiftValidationError(f'Schedule {schedule_id} already exists.') from exc
        logger.info('recurring schedule {} created, first payment at {}', schedule_id, start_at)
        return schedule

    def get(self, schedule_id: str) -> RecurringSchedule:
        try:
            return RecurringSchedule.objects.get(schedule_id=schedule_id)
        except RecurringSchedule.DoesNotExist as exc:
            raise GiftNotFound('Schedule not found.') from exc

    def cancel(self, schedule_id: str, sender_ref: str = '') -> RecurringSchedule:
        schedule = self.get(schedule_id)
        if schedule.status != Status.ACTIVE:
            raise ScheduleClosed(f'Schedule {schedule_id} is {schedule.status}.')
        if sender_ref and schedule.sender_ref and sender_ref != schedule.sender_ref:
            raise GiftNotFound('Schedule not found.')
        updated = RecurringSchedule.objects.filter(
            pk=schedule.pk, status=Status.ACTIVE,
        ).update(status=Status.CANCELLED, updated_at=self.clock())
        if updated != 1:
            raise ScheduleClosed(f'Schedule {schedule_id} is no longer active.')
        logger.info('recurring schedule {} cancelled', schedule_id)
        schedule.refresh_from_db()
        return schedule

    def _exhausted(self, schedule: RecurringSchedule, now: datetime) -> bool:
        if schedule.remaining_payments is not None and schedule.remaining_payments <= 0:
            return True
        return schedule.end_at is not None and now >= schedule.end_at

    def run_due(self) -> int:
        """Create one gift for every schedule whose payment is due."""
        now = self.clock()
        due = RecurringSchedule.objects.filter(status=Status.ACTIVE, next_run_at__lte=now)
        created = 0
        for schedule in due:
            if self._run_one(schedule, now):
                created += 1
        return created

    def _run_one(self, schedule: RecurringSchedule, now: datetime) -> bool:
        if self._exhausted(schedule, now):
            self._close(schedule)
            return False

        # Claim this tick by moving next_run_at forward before paying, so two
        # schedulers cannot both pay the same interval.
        next_run_at = schedule.next_run_at + timedelta(seconds=schedule.interval_seconds)
        claimed = RecurringSchedule.objects.filter(
            pk=schedule.pk, status=Status.ACTIVE, next_run_at=schedule.next_run_at,
        ).update(next_run_at=next_run_at, updated_at=now)
        if claimed != 1:
            return False
        schedule.next_run_at = next_run_at

        paid = False
        try:
            self.coordinator.create_gift(GiftInput(
                amount=schedule.amount,
                source_network=schedule.source_network,
                destination_network=schedule.destination_network,
                sender_ref=schedule.sender_ref,
                sender_wallet_address=schedule.sender_wallet_address,
                recipient_handle=schedule.recipient_handle,
                recipient_email=schedule.recipient_email,
                message=schedule.message,
                expires_at=self.coordinator.expiry_from_days(None),
                with_secret=schedule.with_secret,
                schedule_id=schedule.pk,
            ))
            paid = True
            schedule.last_error = ''
        except GiftError as exc:
            logger.error('recurring payment for {} failed: {}', schedule.schedule_id, exc.message)
            schedule.last_error = exc.message

        if paid:
            schedule.payments_made += 1
            if schedule.remaining_payments is not None:
                schedule.remaining_payments -= 1
        schedule.save(update_fields=[
            'payments_made', 'remaining_payments', 'last_error', 'updated_at'])

        if self._exhausted(schedule, schedule.next_run_at):
            self._close(schedule)
        return paid

    def _close(self, schedule: RecurringSchedule) -> None:
        RecurringSchedule.objects.filter(pk=schedule.pk, status=Status.ACTIVE).update(
            status=Status.COMPLETED, updated_at=self.clock())
        schedule.status = Status.COMPLETED
        logger.info('recurring schedule {} completed after {} payments',
                    schedule.schedule_id, schedule.payments_made)
