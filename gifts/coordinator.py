"""
Gift lifecycle coordinator.

    pending -> escrow_funded -> claimed -> transferring -> completed
    pending / escrow_funded -> expired
    any non-terminal -> failed

The coordinator is the only caller of ``GiftStore.transition`` and the only
place where typed errors become user-facing messages.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional

from django.conf import settings
from django.utils import timezone
from loguru import logger

from gifts.amounts import from_base_units
from gifts.credentials import verify_secret
from gifts.errors import (
    AlreadyClaimed,
    EscrowNotFunded,
    GiftError,
    GiftExpired,
    GiftLocked,
    GiftNotFound,
    GiftValidationError,
    InsufficientFunds,
    InvalidSecret,
    SignaturesPending,
    TransitionConflict,
)
from gifts.escrow import EscrowManager
from gifts.models import Gift, MultiSigProposal, Transfer
from gifts.store import CreatedGift, GiftInput, GiftStore
from gifts.transfers import TransferOrchestrator

Status = Gift.Status

# User-facing text per error code. Not-found and wrong-secret share one
# message so a caller cannot probe which claim codes exist.
USER_MESSAGES = {
    'not_found': 'Gift not found or secret is incorrect.',
    'invalid_secret': 'Gift not found or secret is incorrect.',
    'already_claimed': 'This gift has already been claimed.',
    'conflict': 'This gift has already been claimed.',
    'expired': 'This gift has expired.',
    'locked': 'This gift cannot be claimed yet.',
    'escrow_not_funded': 'This gift is not funded yet. Please contact the sender.',
    'insufficient_funds': 'The escrow account does not hold enough funds for this gift.',
    'not_configured': 'Gift service is misconfigured.',
    'upstream_error': 'A settlement service is temporarily unavailable. Please try again.',
    'transfer_timeout': 'Settlement timed out. The gift needs operator attention.',
    'transfer_rejected': 'Settlement was rejected. The gift needs operator attention.',
    'invalid_transition': 'Gift is not in a state that allows this action.',
    'unauthorized_signer': 'Signer is not allowed to approve this gift.',
    'duplicate_signature': 'Signer has already approved this gift.',
    'signatures_pending': 'This gift is waiting for more approvals.',
    'proposal_closed': 'This proposal is closed.',
    'schedule_closed': 'This schedule is no longer active.',
}


@dataclass
class GiftCreated:
    gift: Gift
    claim_url: str
    claim_secret: Optional[str]
    funded: bool
    funding_error: Optional[str] = None


@dataclass
class ClaimResult:
    gift: Gift
    transfer: Optional[Transfer]

    @property
    def status(self) -> str:
        return self.gift.status


def serialize_gift(gift: Gift) -> Dict[str, Any]:
    """Sanitized gift view; never includes the secret hash."""
    transfer = gift.transfer
    return {
        'id': str(gift.id),
        'claimCode': gift.claim_code,
        'requiresSecret': gift.requires_secret,
        'senderWalletAddress': gift.sender_wallet_address,
        'recipientHandle': gift.recipient_handle or None,
        'recipientEmail': gift.recipient_email or None,
        'recipientName': gift.recipient_name or None,
        'recipientAddress': gift.recipient_address,
        'amount': from_base_units(gift.amount, settings.GIFTS_STABLECOIN_DECIMALS),
        'amountUnits': gift.amount,
        'sourceNetwork': gift.source_network,
        'destinationNetwork': gift.destination_network,
        'message': gift.message or None,
        'status': gift.status,
        'unlockAt': gift.unlock_at.isoformat() if gift.unlock_at else None,
        'expiresAt': gift.expires_at.isoformat() if gift.expires_at else None,
        'createdAt': gift.created_at.isoformat(),
        'claimedAt': gift.claimed_at.isoformat() if gift.claimed_at else None,
        'completedAt': gift.completed_at.isoformat() if gift.completed_at else None,
        'failureReason': gift.failure_reason or None,
        'transfer': serialize_transfer(transfer) if transfer else None,
    }


def serialize_transfer(transfer: Transfer) -> Dict[str, Any]:
    return {
        'id': str(transfer.id),
        'mode': transfer.mode,
        'status': transfer.status,
        'sourceTxHash': transfer.source_tx_hash,
        'destinationTxHash': transfer.destination_tx_hash,
        'failureReason': transfer.failure_reason or None,
        'completedAt': transfer.completed_at.isoformat() if transfer.completed_at else None,
    }


class GiftCoordinator:
    # How long a retry may sit without its Transfer before it is failed for review.
    RETRY_ATTACH_GRACE = timedelta(minutes=10)

    def __init__(
        self,
        store: Optional[GiftStore] = None,
        escrow: Optional[EscrowManager] = None,
        orchestrator: Optional[TransferOrchestrator] = None,
        clock: Callable[[], datetime] = timezone.now,
        claim_base_url: str = '',
        supported_networks=None,
        default_expiry_days: int = 90,
    ):
        self.clock = clock
        self.store = store or GiftStore(clock=clock)
        self.escrow = escrow or EscrowManager(clock=clock)
        self.orchestrator = orchestrator or TransferOrchestrator(clock=clock)
        self.claim_base_url = claim_base_url.rstrip('/')
        self.supported_networks = set(supported_networks or ())
        self.default_expiry_days = default_expiry_days

    @classmethod
    def from_settings(cls) -> 'GiftCoordinator':
        return cls(
            orchestrator=TransferOrchestrator.from_settings(),
            claim_base_url=settings.GIFTS_CLAIM_BASE_URL,
            supported_networks=settings.GIFTS_NETWORKS.keys(),
            default_expiry_days=settings.GIFTS_DEFAULT_EXPIRY_DAYS,
        )

    # Creation and funding

    def claim_url(self, gift: Gift) -> str:
        return f'{self.claim_base_url}/claim/{gift.claim_code}'

    def _check_network(self, network: str) -> str:
        network = (network or '').lower().strip()
        if self.supported_networks and network not in self.supported_networks:
            raise GiftValidationError(f'Unsupported network: {network}')
        return network

    def expiry_from_days(self, expires_in_days: Optional[int]) -> Optional[datetime]:
        days = self.default_expiry_days if expires_in_days is None else expires_in_days
        if not days:
            return None
        return self.clock() + timedelta(days=days)

    def create_gift(self, data: GiftInput, fund: bool = True) -> GiftCreated:
        data.source_network = self._check_network(data.source_network)
        data.destination_network = self._check_network(data.destination_network)
        if data.unlock_at and data.expires_at and data.unlock_at >= data.expires_at:
            raise GiftValidationError('unlockAt must be before the expiry.')

        created: CreatedGift = self.store.create(data)
        gift = created.gift

        funded, funding_error = False, None
        if fund:
            try:
                gift = self.fund(gift.id)
                funded = gift.status == Status.ESCROW_FUNDED
            except (InsufficientFunds, SignaturesPending) as exc:
                funding_error = exc.message
            except GiftError as exc:
                # The gift exists and stays pending; funding can be retried.
                logger.warning('gift {} created but funding failed: {}', gift.id, exc.message)
                funding_error = exc.message

        return GiftCreated(
            gift=gift,
            claim_url=self.claim_url(gift),
            claim_secret=created.claim_secret,
            funded=funded,
            funding_error=funding_error,
        )

    def fund(self, gift_id) -> Gift:
        """Move a pending gift to ``escrow_funded`` once escrow covers it."""
        gift = self.store.expire_if_due(self.store.get(gift_id))
        if gift.status == Status.EXPIRED:
            raise GiftExpired('This gift has expired.')
        if gift.status != Status.PENDING:
            return gift

        proposal = MultiSigProposal.objects.filter(gift_id=gift.id).first()
        if proposal is not None and proposal.status != MultiSigProposal.Status.APPROVED:
            raise SignaturesPending(
                f'{proposal.signature_count} of {proposal.required_signatures} approvals collected.')

        if not self.escrow.confirm_funded(gift):
            raise InsufficientFunds(
                f'Holding account on {gift.source_network} cannot cover {gift.amount} units.')
        try:
            return self.store.transition(gift.id, Status.PENDING, Status.ESCROW_FUNDED)
        except TransitionConflict:
            return self.store.get(gift.id)

    # Claiming

    def lookup(self, claim_code: str, secret: Optional[str] = None) -> Gift:
        """Claim lookup. Returns the gift only when it can still be claimed."""
        gift = self.store.get_by_claim_code(claim_code)
        if gift.status in (Status.CLAIMED, Status.TRANSFERRING, Status.COMPLETED):
            raise AlreadyClaimed('This gift has already been claimed.')
        if gift.status == Status.FAILED:
            raise GiftNotFound('Gift not found.')
        if secret is not None and gift.requires_secret and not verify_secret(secret, gift.claim_secret_hash):
            raise InvalidSecret('Gift not found or secret is incorrect.')
        return gift

    def claim(self, claim_code: str, secret: Optional[str], recipient_address: str,
              wait: bool = False) -> ClaimResult:
        """Claim a gift and start settlement to ``recipient_address``.

        Expiry is checked before the secret; the guarded transition makes sure
        only one of several concurrent claims wins.
        """
        gift = self.store.lookup(claim_code)
        now = self.clock()

        if gift.status == Status.EXPIRED:
            raise GiftExpired('This gift has expired.')
        if gift.status in (Status.CLAIMED, Status.TRANSFERRING, Status.COMPLETED):
            raise AlreadyClaimed('This gift has already been claimed.')
        if gift.status == Status.FAILED:
            raise GiftNotFound('Gift not found.')
        if gift.unlock_at and now < gift.unlock_at:
            raise GiftLocked(f'This gift unlocks at {gift.unlock_at.isoformat()}.')
        if gift.requires_secret and not verify_secret(secret, gift.claim_secret_hash):
            logger.info('invalid secret presented for gift {}', gift.claim_code)
            raise InvalidSecret('Gift not found or secret is incorrect.')
        if gift.status == Status.PENDING:
            raise EscrowNotFunded('This gift is not funded yet.')

        if not self.orchestrator.validate_recipient(gift.destination_network, recipient_address):
            raise GiftValidationError(
                f'Invalid recipient address for {gift.destination_network}.')

        try:
            gift = self.store.transition(
                gift.id, Status.ESCROW_FUNDED, Status.CLAIMED,
                recipient_address=recipient_address,
                claimed_at=now,
            )
        except TransitionConflict as exc:
            logger.info('claim race lost for gift {}', gift.claim_code)
            raise AlreadyClaimed('This gift has already been claimed.') from exc

        gift = self.settle(gift)
        transfer = gift.transfer
        if wait and transfer is not None and not transfer.is_terminal:
            gift = self.run_settlement(gift)
            transfer = gift.transfer
        return ClaimResult(gift=gift, transfer=transfer)

    # Settlement

    def settle(self, gift: Gift) -> Gift:
        """Start (or resume) settlement for a claimed gift.

        A gift that already has a Transfer is never given a second one here;
        the existing Transfer is resumed instead.
        """
        if gift.status != Status.CLAIMED:
            return gift

        existing = Transfer.objects.filter(gift_id=gift.id).order_by('-created_at').first()
        if existing is not None:
            return self._attach_transfer(gift, existing)

        try:
            if not self.escrow.confirm_funded(gift):
                raise InsufficientFunds(
                    f'Holding account on {gift.source_network} cannot cover {gift.amount} units.')
            release = self.escrow.release_authorization(gift)
            transfer = self.orchestrator.initiate(release)
        except GiftError as exc:
            logger.error('settlement of gift {} could not start: {}', gift.id, exc.message)
            return self.store.fail(gift, f'{exc.code}: {exc.message}')

        return self._attach_transfer(gift, transfer)

    def _attach_transfer(self, gift: Gift, transfer: Transfer) -> Gift:
        try:
            gift = self.store.transition(gift.id, gift.status, Status.TRANSFERRING, transfer=transfer)
        except TransitionConflict:
            gift = self.store.get(gift.id)
        return self.sync_with_transfer(gift)

    def sync_with_transfer(self, gift: Gift) -> Gift:
        """Reflect a terminal Transfer on its gift."""
        transfer = gift.transfer
        if gift.status != Status.TRANSFERRING or transfer is None or not transfer.is_terminal:
            return gift
        try:
            if transfer.status == Transfer.Status.DESTINATION_CONFIRMED:
                gift = self.store.transition(
                    gift.id, Status.TRANSFERRING, Status.COMPLETED,
                    completed_at=transfer.completed_at or self.clock(),
                )
                logger.info('gift {} completed via transfer {}', gift.id, transfer.id)
                return gift
            return self.store.transition(
                gift.id, Status.TRANSFERRING, Status.FAILED,
                failure_reason=f'{transfer.failure_code}: {transfer.failure_reason}',
            )
        except TransitionConflict:
            return self.store.get(gift.id)

    def refresh(self, gift_id) -> Gift:
        """Poll the gift's Transfer once and fold the outcome into the gift."""
        gift = self.store.expire_if_due(self.store.get(gift_id))
        if gift.status == Status.CLAIMED:
            return self.settle(gift)
        if gift.status == Status.TRANSFERRING and not gift.transfer_id:
            return self._recover_retry(gift)
        if gift.status == Status.TRANSFERRING:
            self.orchestrator.poll_status(gift.transfer_id)
            gift = self.store.get(gift.id)
            return self.sync_with_transfer(gift)
        return gift

    def _recover_retry(self, gift: Gift) -> Gift:
        """Finish a retry whose worker stopped before attaching its Transfer."""
        if self.clock() - gift.updated_at < self.RETRY_ATTACH_GRACE:
            return gift
        orphan = (
            Transfer.objects.filter(gift_id=gift.id)
            .exclude(status=Transfer.Status.FAILED)
            .order_by('-created_at')
            .first()
        )
        if orphan is not None:
            try:
                gift = self.store.attach_transfer(gift.id, orphan)
            except TransitionConflict:
                return self.store.get(gift.id)
            logger.info('gift {} adopted transfer {} left by an interrupted retry', gift.id, orphan.id)
            return self.sync_with_transfer(gift)
        return self.store.fail(gift, 'Settlement retry was interrupted; manual review required.')

    def run_settlement(self, gift: Gift) -> Gift:
        """Drive the gift's Transfer to a terminal state, then finalize."""
        if gift.status == Status.CLAIMED:
            gift = self.settle(gift)
        if gift.status != Status.TRANSFERRING or gift.transfer is None:
            return gift
        self.orchestrator.run_until_terminal(gift.transfer)
        return self.sync_with_transfer(self.store.get(gift.id))

    def resume_inflight(self) -> int:
        """Resume settlements a crashed worker left behind.

        Each gift is refreshed on its own; one that cannot make progress is
        logged and skipped so it never holds up the rest.
        """
        resumed = 0
        inflight = Gift.objects.filter(
            status__in=(Status.CLAIMED, Status.TRANSFERRING),
        ).values_list('id', flat=True)
        for gift_id in inflight:
            try:
                gift = self.refresh(gift_id)
            except GiftError as exc:
                logger.error('resuming gift {} failed: {} ({})', gift_id, exc.message, exc.code)
                continue
            resumed += 1
            logger.debug('resumed gift {} -> {}', gift_id, gift.status)
        return resumed

    def retry_settlement(self, gift_id) -> Gift:
        """Operator-triggered retry: a new Transfer for a failed gift.

        The gift leaves ``failed`` before anything is submitted, so of two
        concurrent retries only the one that wins that transition spends.
        """
        gift = self.store.get(gift_id)
        if gift.status != Status.FAILED or not gift.recipient_address:
            raise GiftValidationError('Only failed, claimed gifts can be retried.')

        release = self.escrow.release_authorization(gift)
        previous = Transfer.objects.filter(gift_id=gift.id).order_by('-created_at').first()
        try:
            gift = self.store.transition(
                gift.id, Status.FAILED, Status.TRANSFERRING,
                transfer=None, failure_reason='',
            )
        except TransitionConflict:
            logger.info('gift {} retry already taken by another operator request', gift.id)
            return self.store.get(gift.id)

        try:
            # Raises while the previous source transaction is still unresolved.
            transfer = self.orchestrator.initiate(release, resume_from=previous)
        except GiftError as exc:
            logger.error('retry of gift {} could not start: {}', gift.id, exc.message)
            self.store.fail(gift, f'{exc.code}: {exc.message}')
            raise

        try:
            gift = self.store.attach_transfer(gift.id, transfer)
        except TransitionConflict:
            return self.store.get(gift.id)
        logger.info('gift {} settlement retried with transfer {}', gift.id, transfer.id)
        return self.sync_with_transfer(gift)

    # Errors

    @staticmethod
    def describe_error(exc: GiftError) -> Dict[str, Any]:
        code = 'already_claimed' if isinstance(exc, TransitionConflict) else exc.code
        return {
            'success': False,
            'error': code,
            'message': USER_MESSAGES.get(code, 'Request could not be completed.'),
            'retryable': exc.retryable,
        }
