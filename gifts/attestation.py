"""
Client for the attestation service that observes source-network burns.

Talks to Circle's Iris API v2:
``GET /v2/messages/{sourceDomain}?transactionHash={burnTxHash}``.
"""
from dataclasses import dataclass
from typing import Optional

import requests
from loguru import logger
from pydantic import ValidationError as PydanticValidationError

from gifts.errors import UpstreamError
from gifts.schemas import AttestationMessagesResponse

PENDING_STATUSES = {'pending', 'pending_confirmations'}
COMPLETE_STATUS = 'complete'


@dataclass(frozen=True)
class AttestationResult:
    PENDING = 'pending'
    COMPLETE = 'complete'
    REJECTED = 'rejected'

    state: str
    message: Optional[str] = None
    attestation: Optional[str] = None
    reason: Optional[str] = None


class AttestationClient:

    def __init__(self, base_url: str, timeout: float = 10, session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.session = session or requests.Session()

    @classmethod
    def from_settings(cls) -> 'AttestationClient':
        from django.conf import settings

        return cls(
            base_url=settings.GIFTS_ATTESTATION_API_URL,
            timeout=settings.GIFTS_ATTESTATION_TIMEOUT_SECONDS,
        )

    def fetch(self, source_domain: int, burn_tx_hash: str) -> AttestationResult:
        """Look up the attestation for a burn transaction.

        Raises UpstreamError for transport failures and malformed bodies;
        callers treat those as "try again later".
        """
        url = f'{self.base_url}/v2/messages/{int(source_domain)}'
        try:
            response = self.session.get(
                url,
                params={'transactionHash': burn_tx_hash},
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise UpstreamError(f'Attestation service unreachable: {exc}') from exc

        # The service answers 404 until it has indexed the burn.
        if response.status_code == 404:
            return AttestationResult(state=AttestationResult.PENDING)
        if response.status_code == 429 or response.status_code >= 500:
            raise UpstreamError(
                f'Attestation service unavailable: HTTP {response.status_code}')
        if not response.ok:
            return AttestationResult(
                state=AttestationResult.REJECTED,
                reason=f'Attestation request refused: HTTP {response.status_code}',
            )

        try:
            body = AttestationMessagesResponse.model_validate(response.json())
        except (ValueError, PydanticValidationError) as exc:
            logger.debug('attestation body failed validation: {}', exc)
            raise UpstreamError('Malformed attestation response.') from exc

        if not body.messages:
            return AttestationResult(state=AttestationResult.PENDING)

        entry = body.messages[0]
        status = entry.status.lower()
        if status in PENDING_STATUSES:
            return AttestationResult(state=AttestationResult.PENDING)
        if status != COMPLETE_STATUS:
            return AttestationResult(
                state=AttestationResult.REJECTED,
                reason=f'Attestation status {entry.status}',
            )
        if not entry.message or not entry.attestation or entry.attestation.upper() == 'PENDING':
            raise UpstreamError('Complete attestation is missing message or signature.')
        return AttestationResult(
            state=AttestationResult.COMPLETE,
            message=entry.message,
            attestation=entry.attestation,
        )
