"""
Cross-network transfer orchestrator.

A Transfer moves one gift's value from the holding account on the source
network to the recipient on the destination network:

    same network:   initiated -> destination-confirmed
    cross network:  initiated -> source-confirmed -> attestation-pending
                    -> attestation-received -> destination-confirmed

Any phase may end in ``failed``. ``poll_status`` advances at most one phase
per call and persists the result before returning, so any worker can pick a
transfer up where another one stopped.
"""
from datetime import datetime
from typing import Callable, Optional, Type

from django.utils import timezone
from loguru import logger

from gifts.attestation import AttestationClient, AttestationResult
from gifts.chain_handlers import ChainHandler, ChainHandlerFactory, ReceiptResult
from gifts.errors import (
    GiftError,
    GiftValidationError,
    NotConfigured,
    TransferRejected,
    TransferTimeout,
    UpstreamError,
)
from gifts.escrow import ReleaseToken
from gifts.models import Transfer
from gifts.polling import PollPolicy

Status = Transfer.Status


class TransferOrchestrator:

    def __init__(
        self,
        handlers: Callable[[str], ChainHandler] = ChainHandlerFactory.from_settings,
        attestation: Optional[AttestationClient] = None,
        poll_policy: Optional[PollPolicy] = None,
        submit_policy: Optional[PollPolicy] = None,
        clock: Callable[[], datetime] = timezone.now,
    ):
        self.handlers = handlers
        self.attestation = attestation
        self.poll_policy = poll_policy or PollPolicy()
        self.submit_policy = submit_policy or PollPolicy(max_attempts=3, interval_seconds=1.0)
        self.clock = clock

    @classmethod
    def from_settings(cls) -> 'TransferOrchestrator':
        return cls(
            attestation=AttestationClient.from_settings(),
            poll_policy=PollPolicy.from_settings(),
            submit_policy=PollPolicy.for_submission(),
        )

    def _handler(self, network: str) -> ChainHandler:
        try:
            return self.handlers(network)
        except ValueError as exc:
            raise NotConfigured(str(exc)) from exc

    def validate_recipient(self, network: str, address: str) -> bool:
        return bool(address) and self._handler(network).validate_address(address)

    # Initiation

    def initiate(self, release: ReleaseToken, resume_from: Optional[Transfer] = None) -> Transfer:
        """Record a new Transfer and submit its source transaction.

        ``resume_from`` is the gift's previous Transfer on an operator retry.
        A source transaction it already confirmed is reused instead of
        spending again.
        """
        if not self.validate_recipient(release.destination_network, release.recipient_address):
            raise GiftValidationError(
                f'Invalid recipient address for {release.destination_network}.')
        destination = self._handler(release.destination_network)

        reusable = resume_from is not None and self._source_confirmed(resume_from)

        cross = release.source_network != release.destination_network
        transfer = Transfer.objects.create(
            gift_id=release.gift_id,
            mode=Transfer.Mode.CROSS_NETWORK if cross else Transfer.Mode.SAME_NETWORK,
            source_network=release.source_network,
            destination_network=release.destination_network,
            amount=release.amount,
            recipient_address=release.recipient_address,
            status=Status.INITIATED,
        )
        logger.info(
            'transfer {} initiated for gift {}: {} units {} -> {} ({})',
            transfer.id, release.gift_id, release.amount,
            release.source_network, release.destination_network, transfer.mode,
        )

        if reusable:
            return self._reuse_source(transfer, resume_from)

        source = self._handler(release.source_network)
        result = None
        for attempt in self.submit_policy.attempts():
            if cross:
                result = source.submit_burn(
                    release.amount, destination.domain, release.recipient_address)
            else:
                result = source.submit_transfer(release.recipient_address, release.amount)
            if result.success or not result.retryable:
                break
            logger.warning(
                'transfer {} source submission attempt {} failed: {}',
                transfer.id, attempt, result.error_reason,
            )

        if result is None or not result.success:
            reason = result.error_reason if result else 'source submission not attempted'
            self._fail(transfer, TransferRejected, reason)
            transfer.save()
            return transfer

        transfer.source_tx_hash = result.transaction_hash
        transfer.save(update_fields=['source_tx_hash', 'updated_at'])
        return transfer

    def _source_confirmed(self, previous: Transfer) -> bool:
        """Whether ``previous`` already spent on the source network.

        Raises UpstreamError while that cannot be known yet; submitting again
        in that window could spend twice.
        """
        if not previous.source_tx_hash:
            return False
        receipt = self._safe_receipt(previous.source_network, previous.source_tx_hash)
        if receipt is None:
            raise UpstreamError('Cannot confirm the previous source transaction; try again later.')
        if receipt.reverted:
            return False
        if not receipt.confirmed:
            raise UpstreamError('Previous source transaction is still pending.')
        return True

    def _reuse_source(self, transfer: Transfer, previous: Transfer) -> Transfer:
        transfer.source_tx_hash = previous.source_tx_hash
        if transfer.mode == Transfer.Mode.SAME_NETWORK:
            transfer.destination_tx_hash = previous.source_tx_hash
            transfer.status = Status.DESTINATION_CONFIRMED
            transfer.completed_at = self.clock()
        elif previous.message and previous.attestation:
            transfer.message = previous.message
            transfer.attestation = previous.attestation
            transfer.status = Status.ATTESTATION_RECEIVED
        else:
            transfer.status = Status.SOURCE_CONFIRMED
        transfer.save()
        logger.info(
            'transfer {} reuses source tx {} from transfer {} at {}',
            transfer.id, previous.source_tx_hash, previous.id, transfer.status,
        )
        return transfer

    # Polling

    # Columns a poll may change; written back with a compare-and-swap.
    POLLED_FIELDS = (
        'status',
        'attempts',
        'message',
        'attestation',
        'destination_tx_hash',
        'failure_code',
        'failure_reason',
        'completed_at',
    )

    def poll_status(self, transfer_id) -> Transfer:
        """Advance the transfer by at most one phase and return it.

        Terminal transfers are returned untouched, so repeated polling is
        safe. No row lock is held while the network is queried; the result
        is written only if no other worker advanced the transfer meanwhile.
        """
        transfer = Transfer.objects.get(pk=transfer_id)
        if transfer.is_terminal:
            return transfer
        observed = (transfer.status, transfer.attempts, transfer.destination_tx_hash)

        step = {
            Status.INITIATED: self._advance_initiated,
            Status.SOURCE_CONFIRMED: self._advance_source_confirmed,
            Status.ATTESTATION_PENDING: self._advance_attestation_pending,
            Status.ATTESTATION_RECEIVED: self._advance_attestation_received,
        }[transfer.status]
        try:
            step(transfer)
        except NotConfigured as exc:
            self._fail(transfer, NotConfigured, exc.message)
        return self._commit(transfer, observed)

    def _commit(self, transfer: Transfer, observed) -> Transfer:
        status, attempts, destination_tx_hash = observed
        updated = Transfer.objects.filter(
            pk=transfer.pk,
            status=status,
            attempts=attempts,
            destination_tx_hash=destination_tx_hash,
        ).update(
            updated_at=self.clock(),
            **{name: getattr(transfer, name) for name in self.POLLED_FIELDS},
        )
        if updated != 1:
            logger.info('transfer {} was advanced by another worker; keeping stored state', transfer.pk)
            return Transfer.objects.get(pk=transfer.pk)
        return transfer

    def run_until_terminal(self, transfer: Transfer, policy: Optional[PollPolicy] = None) -> Transfer:
        """Poll until the transfer settles or the poll budget is spent.

        Each phase enforces its own attempt limit, so a transfer cannot stay
        non-terminal forever across repeated calls.
        """
        policy = policy or self.poll_policy
        # One budget per phase, plus one poll for each phase change.
        budget = policy.max_attempts * 4 + 4
        current = transfer
        for attempt in range(1, budget + 1):
            current = self.poll_status(current.pk)
            if current.is_terminal:
                return current
            policy.sleep(policy.delay_for(attempt))
        logger.warning('transfer {} still {} after {} polls', current.pk, current.status, budget)
        return current

    def _advance_initiated(self, transfer: Transfer) -> Transfer:
        if not transfer.source_tx_hash:
            # The worker stopped between recording the transfer and saving the
            # hash; resubmitting could spend twice.
            return self._fail(
                transfer, TransferRejected,
                'Source submission was interrupted; manual review required.')

        receipt = self._safe_receipt(transfer.source_network, transfer.source_tx_hash)
        if receipt is None or receipt.state == ReceiptResult.PENDING:
            return self._count_attempt(transfer, 'source confirmation')
        if receipt.reverted:
            return self._fail(transfer, TransferRejected, receipt.error_reason or 'Source transaction reverted')

        if transfer.mode == Transfer.Mode.SAME_NETWORK:
            transfer.destination_tx_hash = transfer.source_tx_hash
            return self._complete(transfer)

        return self._move(transfer, Status.SOURCE_CONFIRMED)

    def _advance_source_confirmed(self, transfer: Transfer) -> Transfer:
        # Iris v2 indexes burns by transaction hash, so handing over the burn
        # reference is the status change itself.
        return self._move(transfer, Status.ATTESTATION_PENDING)

    def _advance_attestation_pending(self, transfer: Transfer) -> Transfer:
        if self.attestation is None:
            raise NotConfigured('No attestation client configured.')

        source = self._handler(transfer.source_network)
        try:
            result = self.attestation.fetch(source.domain, transfer.source_tx_hash)
        except UpstreamError as exc:
            logger.warning('transfer {} attestation poll failed: {}', transfer.id, exc.message)
            return self._count_attempt(transfer, 'attestation')

        if result.state == AttestationResult.REJECTED:
            return self._fail(transfer, TransferRejected, result.reason or 'Attestation rejected')
        if result.state == AttestationResult.PENDING:
            return self._count_attempt(transfer, 'attestation')

        transfer.message = result.message
        transfer.attestation = result.attestation
        logger.info('transfer {} attestation received', transfer.id)
        return self._move(transfer, Status.ATTESTATION_RECEIVED)

    def _advance_attestation_received(self, transfer: Transfer) -> Transfer:
        destination = self._handler(transfer.destination_network)

        if transfer.destination_tx_hash:
            receipt = self._safe_receipt(transfer.destination_network, transfer.destination_tx_hash)
            if receipt is None or receipt.state == ReceiptResult.PENDING:
                return self._count_attempt(transfer, 'mint confirmation')
            if receipt.confirmed:
                return self._complete(transfer)
            # Minting is idempotent per attestation; submit again, but the
            # reverts share the phase's attempt budget.
            transfer.attempts += 1
            if self.poll_policy.exhausted(transfer.attempts):
                return self._fail(
                    transfer, TransferRejected,
                    f'Mint reverted {transfer.attempts} times: {receipt.error_reason or "execution reverted"}')
            logger.warning('transfer {} mint {} reverted, resubmitting',
                           transfer.id, transfer.destination_tx_hash)
            transfer.destination_tx_hash = None

        result = destination.submit_mint(transfer.message, transfer.attestation)
        if result.success and (result.details or {}).get('already_minted'):
            logger.info('transfer {} message already received on {}',
                        transfer.id, transfer.destination_network)
            return self._complete(transfer)
        if result.success:
            transfer.destination_tx_hash = result.transaction_hash
            return transfer
        if result.error_reason and 'attestation rejected' in result.error_reason.lower():
            return self._fail(transfer, TransferRejected, result.error_reason)

        logger.warning('transfer {} mint submission failed: {}', transfer.id, result.error_reason)
        return self._count_attempt(transfer, 'mint')

    # State helpers; poll_status persists what they set.

    def _safe_receipt(self, network: str, tx_hash: str) -> Optional[ReceiptResult]:
        try:
            return self._handler(network).get_receipt(tx_hash)
        except NotConfigured:
            raise
        except Exception as exc:
            logger.warning('receipt lookup for {} on {} failed: {}', tx_hash, network, exc)
            return None

    def _move(self, transfer: Transfer, status: str) -> Transfer:
        logger.info('transfer {} {} -> {}', transfer.id, transfer.status, status)
        transfer.status = status
        transfer.attempts = 0
        return transfer

    def _count_attempt(self, transfer: Transfer, phase: str) -> Transfer:
        transfer.attempts += 1
        if self.poll_policy.exhausted(transfer.attempts):
            return self._fail(
                transfer, TransferTimeout,
                f'Gave up waiting for {phase} after {transfer.attempts} attempts.')
        return transfer

    def _complete(self, transfer: Transfer) -> Transfer:
        logger.info('transfer {} {} -> {}', transfer.id, transfer.status, Status.DESTINATION_CONFIRMED)
        transfer.status = Status.DESTINATION_CONFIRMED
        transfer.completed_at = self.clock()
        return transfer

    def _fail(self, transfer: Transfer, error: Type[GiftError], reason: str) -> Transfer:
        logger.error('transfer {} failed ({}): {}', transfer.id, error.code, reason)
        transfer.status = Status.FAILED
        transfer.failure_code = error.code
        transfer.failure_reason = reason
        return transfer
