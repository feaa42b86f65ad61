"""
Multi-signature gifts.

A gift behind a proposal stays ``pending`` until enough listed signers have
approved it. Approvals are EIP-191 personal-sign signatures over
``Approve gift <claimCode>``.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from django.core.exceptions import ValidationError
from django.db import IntegrityError, transaction
from eth_account import Account
from eth_account.messages import encode_defunct
from loguru import logger
from web3 import Web3

from gifts.coordinator import GiftCoordinator, GiftCreated
from gifts.errors import (
    DuplicateSignature,
    GiftError,
    GiftNotFound,
    GiftValidationError,
    ProposalClosed,
    UnauthorizedSigner,
)
from gifts.models import Gift, MultiSigProposal, MultiSigSignature
from gifts.store import GiftInput

Status = MultiSigProposal.Status


def approval_message(claim_code: str) -> str:
    return f'Approve gift {claim_code}'


def recover_signer(claim_code: str, signature: str) -> Optional[str]:
    try:
        return Account.recover_message(
            encode_defunct(text=approval_message(claim_code)),
            signature=signature,
        )
    except Exception as exc:
        logger.debug('signature recovery failed: {}', exc)
        return None


def _checksum(address: str) -> str:
    if not Web3.is_address(address):
        raise GiftValidationError(f'Invalid signer address: {address}')
    return Web3.to_checksum_address(address)


@dataclass
class ProposalCreated:
    proposal: MultiSigProposal
    created: GiftCreated


class MultiSigService:

    def __init__(self, coordinator: GiftCoordinator):
        self.coordinator = coordinator

    @property
    def clock(self):
        return self.coordinator.clock

    def create_proposal(
        self,
        data: GiftInput,
        initiator_address: str,
        required_signatures: int,
        signer_addresses: List[str],
        deadline: Optional[datetime] = None,
        initiator_signature: Optional[str] = None,
    ) -> ProposalCreated:
        initiator = _checksum(initiator_address)
        signers = []
        for address in signer_addresses:
            address = _checksum(address)
            if address not in signers:
                signers.append(address)
        if required_signatures <= 0 or required_signatures > len(signers):
            raise GiftValidationError(
                'requiredSignatures must be between 1 and the number of signers.')
        if deadline is not None and deadline <= self.clock():
            raise GiftValidationError('deadline must be in the future.')

        with transaction.atomic():
            created = self.coordinator.create_gift(data, fund=False)
            proposal = MultiSigProposal.objects.create(
                gift=created.gift,
                initiator_address=initiator,
                required_signatures=required_signatures,
                signer_addresses=signers,
                deadline=deadline,
            )
        logger.info('multisig proposal {} for gift {}: {} of {} signers',
                    proposal.id, created.gift.id, required_signatures, len(signers))

        # A listed initiator counts as the first approval.
        if initiator in signers:
            if initiator_signature:
                self._verify(proposal, initiator, initiator_signature)
            self._record(proposal, initiator, initiator_signature or '')
            proposal.refresh_from_db()
            created.gift = self.coordinator.store.get(created.gift.id)
            created.funded = created.gift.status == Gift.Status.ESCROW_FUNDED
        return ProposalCreated(proposal=proposal, created=created)

    def get(self, proposal_id) -> MultiSigProposal:
        try:
            return MultiSigProposal.objects.select_related('gift').get(pk=proposal_id)
        except (MultiSigProposal.DoesNotExist, ValidationError, ValueError) as exc:
            raise GiftNotFound('Proposal not found.') from exc

    def _ensure_open(self, proposal: MultiSigProposal) -> None:
        if proposal.status != Status.OPEN:
            raise ProposalClosed(f'Proposal is {proposal.status}.')
        if proposal.deadline is not None and self.clock() >= proposal.deadline:
            raise ProposalClosed('Proposal deadline has passed.')

    def sign(self, proposal_id, signer_address: str, signature: str) -> MultiSigProposal:
        """Record one approval; funds the gift once the threshold is met."""
        proposal = self.get(proposal_id)
        self._ensure_open(proposal)

        signer = _checksum(signer_address)
        if signer not in proposal.signer_addresses:
            raise UnauthorizedSigner(f'{signer} is not a signer of this proposal.')
        self._verify(proposal, signer, signature)
        return self._record(proposal, signer, signature)

    def _verify(self, proposal: MultiSigProposal, signer: str, signature: str) -> None:
        if recover_signer(proposal.gift.claim_code, signature) != signer:
            raise UnauthorizedSigner('Signature does not match the signer address.')

    def _record(self, proposal: MultiSigProposal, signer: str, signature: str) -> MultiSigProposal:
        try:
            with transaction.atomic():
                MultiSigSignature.objects.create(
                    proposal=proposal, signer_address=signer, signature=signature)
        except IntegrityError as exc:
            raise DuplicateSignature(f'{signer} has already approved.') from exc
        logger.info('proposal {} approved by {} ({}/{})', proposal.id, signer,
                    proposal.signature_count, proposal.required_signatures)

        if proposal.threshold_met:
            approved = MultiSigProposal.objects.filter(
                pk=proposal.pk, status=Status.OPEN,
            ).update(status=Status.APPROVED, approved_at=self.clock())
            proposal.refresh_from_db()
            if approved:
                self._fund(proposal)
        return proposal

    def _fund(self, proposal: MultiSigProposal) -> None:
        try:
            self.coordinator.fund(proposal.gift_id)
        except GiftError as exc:
            # Approval stands; funding can be retried through the fund call.
            logger.warning('approved gift {} not funded yet: {}', proposal.gift_id, exc.message)

    def cancel(self, proposal_id, requester_address: str) -> MultiSigProposal:
        proposal = self.get(proposal_id)
        if proposal.status != Status.OPEN:
            raise ProposalClosed(f'Proposal is {proposal.status}.')
        if _checksum(requester_address) != proposal.initiator_address:
            raise UnauthorizedSigner('Only the initiator can cancel a proposal.')

        updated = MultiSigProposal.objects.filter(
            pk=proposal.pk, status=Status.OPEN,
        ).update(status=Status.CANCELLED)
        if updated != 1:
            raise ProposalClosed('Proposal is no longer open.')
        self.coordinator.store.fail(proposal.gift, 'cancelled')
        logger.info('proposal {} cancelled by initiator', proposal.id)
        proposal.refresh_from_db()
        return proposal
