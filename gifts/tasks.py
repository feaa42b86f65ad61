"""
Celery tasks: periodic hygiene and background settlement.
"""
from functools import wraps

from celery import shared_task
from django.db import connection
from loguru import logger

from gifts.coordinator import GiftCoordinator
from gifts.recurring import RecurringGiftService


def close_db_connection(func):
    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        finally:
            connection.close()
    return wrapper


@shared_task(name='gifts.tasks.sweep_expired_gifts')
@close_db_connection
def sweep_expired_gifts():
    expired = GiftCoordinator.from_settings().store.sweep_expired()
    logger.info('expiry sweep finished: {} gifts expired', expired)
    return expired


@shared_task(name='gifts.tasks.run_recurring_gifts')
@close_db_connection
def run_recurring_gifts():
    created = RecurringGiftService(GiftCoordinator.from_settings()).run_due()
    if created:
        logger.info('recurring tick created {} gifts', created)
    return created


@shared_task(name='gifts.tasks.resume_settlements')
@close_db_connection
def resume_settlements():
    """Advance every claimed or transferring gift by one poll."""
    return GiftCoordinator.from_settings().resume_inflight()


@shared_task(name='gifts.tasks.settle_gift')
@close_db_connection
def settle_gift(gift_id):
    coordinator = GiftCoordinator.from_settings()
    gift = coordinator.run_settlement(coordinator.store.get(gift_id))
    logger.info('background settlement of gift {} ended {}', gift_id, gift.status)
    return gift.status
