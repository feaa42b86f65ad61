from datetime import timedelta
from unittest.mock import patch

from django.test import TestCase

from gifts.attestation import AttestationResult
from gifts.coordinator import GiftCoordinator, serialize_gift
from gifts.errors import (
    AlreadyClaimed,
    EscrowNotFunded,
    GiftExpired,
    GiftLocked,
    GiftNotFound,
    GiftValidationError,
    InvalidSecret,
    InvalidTransition,
    TransitionConflict,
    UpstreamError,
)
from gifts.escrow import EscrowManager
from gifts.models import Gift, Transfer
from gifts.polling import PollPolicy
from gifts.store import GiftInput, GiftStore
from gifts.chain_handlers import ReceiptResult
from gifts.testing import FakeAttestationClient, FakeNetworks, FrozenClock
from gifts.transfers import TransferOrchestrator

RECIPIENT = '0x' + 'cd' * 20


def no_sleep(_seconds):
    return None


class CoordinatorTestCase(TestCase):
    def setUp(self) -> None:
        self.clock = FrozenClock()
        self.networks = FakeNetworks()
        self.attestation = FakeAttestationClient()
        self.coordinator = self._coordinator()

    def _coordinator(self) -> GiftCoordinator:
        return GiftCoordinator(
            store=GiftStore(clock=self.clock),
            escrow=EscrowManager(handlers=self.networks, clock=self.clock),
            orchestrator=TransferOrchestrator(
                handlers=self.networks,
                attestation=self.attestation,
                poll_policy=PollPolicy(max_attempts=3, sleep=no_sleep),
                submit_policy=PollPolicy(max_attempts=2, sleep=no_sleep),
                clock=self.clock,
            ),
            clock=self.clock,
            claim_base_url='https://gifts.example/',
            supported_networks=['ethereum-sepolia', 'base-sepolia', 'arc-testnet'],
        )

    def create(self, **overrides):
        values = dict(
            amount=10_000_000,
            source_network='ethereum-sepolia',
            destination_network='arc-testnet',
            sender_ref='sender-1',
            recipient_handle='alice',
            expires_at=self.coordinator.expiry_from_days(None),
        )
        values.update(overrides)
        return self.coordinator.create_gift(GiftInput(**values))


class GiftCreationTests(CoordinatorTestCase):
    def test_creation_funds_gift_and_builds_claim_url(self):
        created = self.create()

        self.assertTrue(created.funded)
        self.assertEqual(created.gift.status, Gift.Status.ESCROW_FUNDED)
        self.assertEqual(
            created.claim_url, f'https://gifts.example/claim/{created.gift.claim_code}')
        self.assertNotIn(created.claim_secret, created.claim_url)

    def test_underfunded_escrow_leaves_gift_pending(self):
        self.networks['ethereum-sepolia'].balance = 1

        created = self.create()

        self.assertFalse(created.funded)
        self.assertEqual(created.gift.status, Gift.Status.PENDING)
        self.assertIsNotNone(created.funding_error)

        self.networks['ethereum-sepolia'].balance = 10**9
        self.assertEqual(self.coordinator.fund(created.gift.id).status, Gift.Status.ESCROW_FUNDED)

    def test_default_expiry_and_never_expiring_gifts(self):
        self.assertEqual(self.coordinator.expiry_from_days(None), self.clock.now + timedelta(days=90))
        self.assertIsNone(self.coordinator.expiry_from_days(0))

    def test_unsupported_network_is_rejected(self):
        with self.assertRaises(GiftValidationError):
            self.create(destination_network='solana')
        self.assertEqual(Gift.objects.count(), 0)

    def test_sanitized_view_never_exposes_secret_hash(self):
        created = self.create()
        gift = self.coordinator.lookup(created.gift.claim_code)

        view = serialize_gift(gift)

        self.assertTrue(view['requiresSecret'])
        self.assertEqual(view['amount'], '10.00')
        self.assertNotIn('claimSecretHash', view)
        self.assertNotIn(gift.claim_secret_hash, str(view))


class ClaimTests(CoordinatorTestCase):
    def test_happy_path_completes_gift(self):
        created = self.create()

        result = self.coordinator.claim(
            created.gift.claim_code, created.claim_secret, RECIPIENT, wait=True)

        self.assertEqual(result.gift.status, Gift.Status.COMPLETED)
        self.assertEqual(result.transfer.status, Transfer.Status.DESTINATION_CONFIRMED)
        self.assertEqual(result.gift.recipient_address, RECIPIENT)
        self.assertIsNotNone(result.gift.completed_at)
        self.assertEqual(self.networks['ethereum-sepolia'].count('burn'), 1)
        self.assertEqual(self.networks['arc-testnet'].count('mint'), 1)

    def test_claim_without_waiting_completes_through_refresh(self):
        created = self.create()
        result = self.coordinator.claim(created.gift.claim_code, created.claim_secret, RECIPIENT)
        self.assertEqual(result.gift.status, Gift.Status.TRANSFERRING)

        gift = result.gift
        for _ in range(10):
            gift = self.coordinator.refresh(gift.id)
            if gift.is_terminal:
                break

        self.assertEqual(gift.status, Gift.Status.COMPLETED)
        self.assertEqual(Transfer.objects.filter(gift=gift).count(), 1)

    def test_wrong_secret_three_times_keeps_gift_funded(self):
        created = self.create()

        for _ in range(3):
            with self.assertRaises(InvalidSecret):
                self.coordinator.claim(created.gift.claim_code, 'not-the-secret', RECIPIENT)

        gift = Gift.objects.get(pk=created.gift.id)
        self.assertEqual(gift.status, Gift.Status.ESCROW_FUNDED)
        self.assertEqual(Transfer.objects.count(), 0)

    def test_expiry_wins_over_correct_secret(self):
        created = self.create(expires_at=self.coordinator.expiry_from_days(1))
        self.clock.advance(days=2)

        with self.assertRaises(GiftExpired):
            self.coordinator.claim(created.gift.claim_code, created.claim_secret, RECIPIENT)

        self.assertEqual(Gift.objects.get(pk=created.gift.id).status, Gift.Status.EXPIRED)

    def test_second_claim_reports_already_claimed(self):
        created = self.create()
        self.coordinator.claim(created.gift.claim_code, created.claim_secret, RECIPIENT, wait=True)

        with self.assertRaises(AlreadyClaimed):
            self.coordinator.claim(created.gift.claim_code, created.claim_secret, '0x' + 'ef' * 20)

    def test_racing_claims_yield_exactly_one_winner(self):
        created = self.create()
        stale = Gift.objects.get(pk=created.gift.id)
        outcomes = []

        with patch.object(self.coordinator.store, 'lookup', return_value=stale):
            for _ in range(5):
                try:
                    self.coordinator.claim(created.gift.claim_code, created.claim_secret, RECIPIENT)
                    outcomes.append('won')
                except AlreadyClaimed:
                    outcomes.append('already_claimed')

        self.assertEqual(outcomes.count('won'), 1)
        self.assertEqual(outcomes.count('already_claimed'), 4)
        self.assertEqual(Transfer.objects.count(), 1)
        self.assertEqual(self.networks['ethereum-sepolia'].count('burn'), 1)

    def test_unknown_code_and_wrong_secret_look_the_same(self):
        created = self.create()
        with self.assertRaises(GiftNotFound) as unknown:
            self.coordinator.claim('0' * 32, 'whatever', RECIPIENT)
        with self.assertRaises(InvalidSecret) as wrong:
            self.coordinator.claim(created.gift.claim_code, 'whatever', RECIPIENT)

        self.assertEqual(
            GiftCoordinator.describe_error(unknown.exception)['message'],
            GiftCoordinator.describe_error(wrong.exception)['message'],
        )

    def test_unfunded_gift_cannot_be_claimed(self):
        self.networks['ethereum-sepolia'].balance = 0
        created = self.create()

        with self.assertRaises(EscrowNotFunded):
            self.coordinator.claim(created.gift.claim_code, created.claim_secret, RECIPIENT)

    def test_time_locked_gift_opens_at_unlock_time(self):
        created = self.create(unlock_at=self.clock.now + timedelta(days=3))

        with self.assertRaises(GiftLocked):
            self.coordinator.claim(created.gift.claim_code, created.claim_secret, RECIPIENT)

        self.clock.advance(days=3)
        result = self.coordinator.claim(
            created.gift.claim_code, created.claim_secret, RECIPIENT, wait=True)
        self.assertEqual(result.gift.status, Gift.Status.COMPLETED)

    def test_invalid_recipient_address_leaves_gift_claimable(self):
        created = self.create()

        with self.assertRaises(GiftValidationError):
            self.coordinator.claim(created.gift.claim_code, created.claim_secret, 'nope')

        self.assertEqual(Gift.objects.get(pk=created.gift.id).status, Gift.Status.ESCROW_FUNDED)

    def test_gift_without_secret_is_claimable_by_code(self):
        created = self.create(with_secret=False)

        result = self.coordinator.claim(created.gift.claim_code, None, RECIPIENT, wait=True)

        self.assertEqual(result.gift.status, Gift.Status.COMPLETED)


class SettlementFailureTests(CoordinatorTestCase):
    def test_rejected_attestation_fails_gift_with_reason(self):
        self.attestation.results.append(
            AttestationResult(state=AttestationResult.REJECTED, reason='Attestation status failed'))
        created = self.create()

        result = self.coordinator.claim(
            created.gift.claim_code, created.claim_secret, RECIPIENT, wait=True)

        gift = Gift.objects.get(pk=result.gift.id)
        self.assertEqual(gift.status, Gift.Status.FAILED)
        self.assertIn('transfer_rejected', gift.failure_reason)

    def test_operator_retry_settles_without_burning_twice(self):
        self.attestation.results.append(
            AttestationResult(state=AttestationResult.REJECTED, reason='Attestation status failed'))
        created = self.create()
        failed = self.coordinator.claim(
            created.gift.claim_code, created.claim_secret, RECIPIENT, wait=True).gift
        self.assertEqual(failed.status, Gift.Status.FAILED)

        gift = self.coordinator.retry_settlement(failed.id)
        self.assertEqual(gift.status, Gift.Status.TRANSFERRING)
        gift = self.coordinator.run_settlement(gift)

        self.assertEqual(gift.status, Gift.Status.COMPLETED)
        self.assertEqual(gift.failure_reason, '')
        self.assertEqual(Transfer.objects.filter(gift=gift).count(), 2)
        self.assertEqual(self.networks['ethereum-sepolia'].count('burn'), 1)

    def test_retry_requires_failed_gift(self):
        created = self.create()
        with self.assertRaises(GiftValidationError):
            self.coordinator.retry_settlement(created.gift.id)

    def test_claimed_gift_with_transfer_is_resumed_not_restarted(self):
        created = self.create()
        result = self.coordinator.claim(created.gift.claim_code, created.claim_secret, RECIPIENT)
        # A worker crashed after recording the transfer but before the status write.
        Gift.objects.filter(pk=result.gift.id).update(status=Gift.Status.CLAIMED)

        for _ in range(10):
            self.coordinator.resume_inflight()

        gift = Gift.objects.get(pk=result.gift.id)
        self.assertEqual(gift.status, Gift.Status.COMPLETED)
        self.assertEqual(Transfer.objects.filter(gift=gift).count(), 1)
        self.assertEqual(self.networks['ethereum-sepolia'].count('burn'), 1)

    def _fail_first_burn(self) -> Gift:
        created = self.create()
        result = self.coordinator.claim(created.gift.claim_code, created.claim_secret, RECIPIENT)
        self.networks['ethereum-sepolia'].receipts[result.transfer.source_tx_hash] = ReceiptResult.REVERTED
        gift = self.coordinator.refresh(result.gift.id)
        self.assertEqual(gift.status, Gift.Status.FAILED)
        return gift

    def test_racing_retries_burn_once(self):
        failed = self._fail_first_burn()
        stale = Gift.objects.get(pk=failed.id)

        first = self.coordinator.retry_settlement(failed.id)
        with patch.object(self.coordinator.store, 'get', return_value=stale):
            self.coordinator.retry_settlement(failed.id)

        self.assertEqual(first.status, Gift.Status.TRANSFERRING)
        self.assertEqual(self.networks['ethereum-sepolia'].count('burn'), 2)
        self.assertEqual(Transfer.objects.filter(gift_id=failed.id).count(), 2)
        gift = self.coordinator.run_settlement(Gift.objects.get(pk=failed.id))
        self.assertEqual(gift.status, Gift.Status.COMPLETED)
        self.assertEqual(gift.transfer_id, first.transfer_id)
        self.assertEqual(self.networks['ethereum-sepolia'].count('burn'), 2)

    def test_retry_that_cannot_start_returns_gift_to_failed(self):
        failed = self._fail_first_burn()

        with patch.object(
                self.coordinator.orchestrator, 'initiate',
                side_effect=UpstreamError('Previous source transaction is still pending.')):
            with self.assertRaises(UpstreamError):
                self.coordinator.retry_settlement(failed.id)

        gift = Gift.objects.get(pk=failed.id)
        self.assertEqual(gift.status, Gift.Status.FAILED)
        self.assertIn('upstream_error', gift.failure_reason)
        self.assertEqual(self.networks['ethereum-sepolia'].count('burn'), 1)

    def test_interrupted_retry_is_adopted_after_the_grace_period(self):
        failed = self._fail_first_burn()
        with patch.object(self.coordinator.store, 'attach_transfer', side_effect=RuntimeError('worker died')):
            with self.assertRaises(RuntimeError):
                self.coordinator.retry_settlement(failed.id)
        gift = Gift.objects.get(pk=failed.id)
        self.assertEqual(gift.status, Gift.Status.TRANSFERRING)
        self.assertIsNone(gift.transfer_id)

        self.assertIsNone(self.coordinator.refresh(gift.id).transfer_id)
        self.clock.advance(minutes=11)
        for _ in range(10):
            self.coordinator.resume_inflight()

        gift = Gift.objects.get(pk=failed.id)
        self.assertEqual(gift.status, Gift.Status.COMPLETED)
        self.assertEqual(self.networks['ethereum-sepolia'].count('burn'), 2)

    def test_unconfigured_network_fails_only_its_own_gift(self):
        broken = self.create()
        healthy = self.create(recipient_handle='bob')
        broken = self.coordinator.claim(broken.gift.claim_code, broken.claim_secret, RECIPIENT).gift
        healthy = self.coordinator.claim(healthy.gift.claim_code, healthy.claim_secret, RECIPIENT).gift
        Transfer.objects.filter(pk=broken.transfer_id).update(source_network='gone-net')

        for _ in range(10):
            self.coordinator.resume_inflight()

        broken = Gift.objects.get(pk=broken.id)
        self.assertEqual(broken.status, Gift.Status.FAILED)
        self.assertIn('not_configured', broken.failure_reason)
        self.assertEqual(Gift.objects.get(pk=healthy.id).status, Gift.Status.COMPLETED)

    def test_one_gift_raising_does_not_stop_the_others(self):
        first = self.create()
        second = self.create(recipient_handle='bob')
        first = self.coordinator.claim(first.gift.claim_code, first.claim_secret, RECIPIENT).gift
        second = self.coordinator.claim(second.gift.claim_code, second.claim_secret, RECIPIENT).gift
        poll = self.coordinator.orchestrator.poll_status

        def flaky_poll(transfer_id):
            if transfer_id == first.transfer_id:
                raise InvalidTransition('corrupt transfer row')
            return poll(transfer_id)

        with patch.object(self.coordinator.orchestrator, 'poll_status', side_effect=flaky_poll):
            for _ in range(10):
                self.coordinator.resume_inflight()

        self.assertEqual(Gift.objects.get(pk=first.id).status, Gift.Status.TRANSFERRING)
        self.assertEqual(Gift.objects.get(pk=second.id).status, Gift.Status.COMPLETED)

    def test_conflict_is_reported_as_already_claimed(self):
        body = GiftCoordinator.describe_error(
            TransitionConflict('gift-1', Gift.Status.ESCROW_FUNDED, Gift.Status.CLAIMED))
        self.assertEqual(body['error'], 'already_claimed')
        self.assertFalse(body['retryable'])
