"""
Typed errors raised by the gift lifecycle components.

Components raise these; only the coordinator turns them into user-facing
messages (see ``GiftCoordinator.describe_error``).
"""
from typing import Optional


class GiftError(Exception):
    """Base error for the gift escrow service."""

    code = 'gift_error'
    http_status = 400
    retryable = False

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.code)
        self.message = message or self.code


class GiftValidationError(GiftError):
    code = 'validation_error'


class GiftNotFound(GiftError):
    code = 'not_found'
    http_status = 404


class InvalidSecret(GiftError):
    code = 'invalid_secret'
    http_status = 404
    retryable = True


class AlreadyClaimed(GiftError):
    code = 'already_claimed'
    http_status = 409


class TransitionConflict(GiftError):
    """Guarded status transition lost a race against another writer."""

    code = 'conflict'
    http_status = 409

    def __init__(self, gift_id, expected: str, actual: Optional[str] = None):
        super().__init__(
            f'Gift {gift_id} is no longer {expected} (found {actual}).')
        self.gift_id = gift_id
        self.expected = expected
        self.actual = actual


class InvalidTransition(GiftError):
    code = 'invalid_transition'
    http_status = 500


class GiftExpired(GiftError):
    code = 'expired'
    http_status = 410


class GiftLocked(GiftError):
    code = 'locked'
    http_status = 403
    retryable = True


class EscrowNotFunded(GiftError):
    code = 'escrow_not_funded'
    http_status = 409
    retryable = True


class InsufficientFunds(GiftError):
    code = 'insufficient_funds'
    http_status = 402
    retryable = True


class NotConfigured(GiftError):
    """Operator configuration defect (missing RPC URL, signer key, ...)."""

    code = 'not_configured'
    http_status = 500


class UpstreamError(GiftError):
    """An external service answered with something we cannot use."""

    code = 'upstream_error'
    http_status = 502
    retryable = True


class TransferTimeout(GiftError):
    code = 'transfer_timeout'
    http_status = 504


class TransferRejected(GiftError):
    code = 'transfer_rejected'
    http_status = 502


class UnauthorizedSigner(GiftError):
    code = 'unauthorized_signer'
    http_status = 403


class DuplicateSignature(GiftError):
    code = 'duplicate_signature'
    http_status = 409


class SignaturesPending(GiftError):
    code = 'signatures_pending'
    http_status = 409
    retryable = True


class ProposalClosed(GiftError):
    code = 'proposal_closed'
    http_status = 409


class ScheduleClosed(GiftError):
    code = 'schedule_closed'
    http_status = 409
