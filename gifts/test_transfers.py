from unittest.mock import patch

from django.test import TestCase

from gifts.attestation import AttestationResult
from gifts.chain_handlers import ReceiptResult
from gifts.errors import GiftValidationError, UpstreamError
from gifts.escrow import EscrowManager
from gifts.models import Gift, Transfer
from gifts.polling import PollPolicy
from gifts.store import GiftInput, GiftStore
from gifts.testing import FakeAttestationClient, FakeNetworks, FrozenClock
from gifts.transfers import TransferOrchestrator

RECIPIENT = '0x' + 'ab' * 20


def no_sleep(_seconds):
    return None


class TransferOrchestratorTests(TestCase):
    def setUp(self) -> None:
        self.clock = FrozenClock()
        self.networks = FakeNetworks()
        self.store = GiftStore(clock=self.clock)
        self.escrow = EscrowManager(handlers=self.networks, clock=self.clock)

    def _orchestrator(self, *attestations, max_attempts=3) -> TransferOrchestrator:
        self.attestation = FakeAttestationClient(*attestations)
        return TransferOrchestrator(
            handlers=self.networks,
            attestation=self.attestation,
            poll_policy=PollPolicy(max_attempts=max_attempts, sleep=no_sleep),
            submit_policy=PollPolicy(max_attempts=2, sleep=no_sleep),
            clock=self.clock,
        )

    def _claimed_gift(self, source='ethereum-sepolia', destination='arc-testnet') -> Gift:
        gift = self.store.create(GiftInput(
            amount=10_000_000,
            source_network=source,
            destination_network=destination,
            recipient_handle='alice',
        )).gift
        self.store.transition(gift.id, Gift.Status.PENDING, Gift.Status.ESCROW_FUNDED)
        return self.store.transition(
            gift.id, Gift.Status.ESCROW_FUNDED, Gift.Status.CLAIMED,
            recipient_address=RECIPIENT, claimed_at=self.clock.now)

    def _initiate(self, orchestrator, gift) -> Transfer:
        return orchestrator.initiate(self.escrow.release_authorization(gift))

    def test_cross_network_transfer_walks_every_phase(self):
        orchestrator = self._orchestrator()
        transfer = self._initiate(orchestrator, self._claimed_gift())
        self.assertEqual(transfer.status, Transfer.Status.INITIATED)
        self.assertIsNotNone(transfer.source_tx_hash)

        seen = [transfer.status]
        for _ in range(10):
            transfer = orchestrator.poll_status(transfer.id)
            if transfer.status != seen[-1]:
                seen.append(transfer.status)
            if transfer.is_terminal:
                break

        self.assertEqual(seen, [
            Transfer.Status.INITIATED,
            Transfer.Status.SOURCE_CONFIRMED,
            Transfer.Status.ATTESTATION_PENDING,
            Transfer.Status.ATTESTATION_RECEIVED,
            Transfer.Status.DESTINATION_CONFIRMED,
        ])
        self.assertEqual(self.networks['ethereum-sepolia'].count('burn'), 1)
        self.assertEqual(self.networks['arc-testnet'].count('mint'), 1)
        burn = self.networks['ethereum-sepolia'].calls[0]
        self.assertEqual(burn[2], 26)
        self.assertEqual(self.attestation.requests[0], (0, transfer.source_tx_hash))

    def test_same_network_transfer_completes_on_source_receipt(self):
        orchestrator = self._orchestrator()
        gift = self._claimed_gift(source='base-sepolia', destination='base-sepolia')
        transfer = self._initiate(orchestrator, gift)

        transfer = orchestrator.poll_status(transfer.id)

        self.assertEqual(transfer.mode, Transfer.Mode.SAME_NETWORK)
        self.assertEqual(transfer.status, Transfer.Status.DESTINATION_CONFIRMED)
        self.assertEqual(self.networks['base-sepolia'].count('transfer'), 1)
        self.assertEqual(self.networks['base-sepolia'].count('burn'), 0)

    def test_polling_a_terminal_transfer_is_idempotent(self):
        orchestrator = self._orchestrator()
        transfer = orchestrator.run_until_terminal(self._initiate(orchestrator, self._claimed_gift()))
        self.assertEqual(transfer.status, Transfer.Status.DESTINATION_CONFIRMED)
        completed_at = transfer.completed_at

        self.clock.advance(hours=1)
        for _ in range(5):
            again = orchestrator.poll_status(transfer.id)
            self.assertEqual(again.status, Transfer.Status.DESTINATION_CONFIRMED)
            self.assertEqual(again.completed_at, completed_at)
        self.assertEqual(self.networks['arc-testnet'].count('mint'), 1)

    def test_attestation_wait_is_bounded(self):
        pending = AttestationResult(state=AttestationResult.PENDING)
        orchestrator = self._orchestrator(*([pending] * 10), max_attempts=3)

        transfer = orchestrator.run_until_terminal(self._initiate(orchestrator, self._claimed_gift()))

        self.assertEqual(transfer.status, Transfer.Status.FAILED)
        self.assertEqual(transfer.failure_code, 'transfer_timeout')
        self.assertEqual(len(self.attestation.requests), 3)
        self.assertEqual(self.networks['arc-testnet'].count('mint'), 0)

    def test_upstream_errors_count_toward_the_limit(self):
        orchestrator = self._orchestrator(
            UpstreamError('Attestation service unavailable: HTTP 503'), max_attempts=3)

        transfer = orchestrator.run_until_terminal(self._initiate(orchestrator, self._claimed_gift()))

        self.assertEqual(transfer.status, Transfer.Status.DESTINATION_CONFIRMED)
        self.assertEqual(len(self.attestation.requests), 2)

    def test_rejected_attestation_fails_transfer(self):
        orchestrator = self._orchestrator(
            AttestationResult(state=AttestationResult.REJECTED, reason='Attestation status failed'))

        transfer = orchestrator.run_until_terminal(self._initiate(orchestrator, self._claimed_gift()))

        self.assertEqual(transfer.status, Transfer.Status.FAILED)
        self.assertEqual(transfer.failure_code, 'transfer_rejected')

    def test_reverted_burn_fails_transfer(self):
        orchestrator = self._orchestrator()
        transfer = self._initiate(orchestrator, self._claimed_gift())
        self.networks['ethereum-sepolia'].receipts[transfer.source_tx_hash] = ReceiptResult.REVERTED

        transfer = orchestrator.poll_status(transfer.id)

        self.assertEqual(transfer.status, Transfer.Status.FAILED)
        self.assertEqual(transfer.failure_code, 'transfer_rejected')

    def test_pending_source_receipt_is_waited_for_not_resubmitted(self):
        orchestrator = self._orchestrator()
        transfer = self._initiate(orchestrator, self._claimed_gift())
        self.networks['ethereum-sepolia'].pending_polls = 2

        transfer = orchestrator.poll_status(transfer.id)
        transfer = orchestrator.poll_status(transfer.id)
        self.assertEqual(transfer.status, Transfer.Status.INITIATED)
        transfer = orchestrator.poll_status(transfer.id)

        self.assertEqual(transfer.status, Transfer.Status.SOURCE_CONFIRMED)
        self.assertEqual(self.networks['ethereum-sepolia'].count('burn'), 1)

    def test_submission_retries_only_when_nothing_was_broadcast(self):
        source = self.networks['ethereum-sepolia']
        source.submit_failures.append(('burn not submitted: RPC unavailable', True))
        orchestrator = self._orchestrator()

        transfer = self._initiate(orchestrator, self._claimed_gift())

        self.assertEqual(transfer.status, Transfer.Status.INITIATED)
        self.assertEqual(source.count('burn'), 2)

    def test_non_retryable_submission_failure_fails_transfer(self):
        source = self.networks['ethereum-sepolia']
        source.submit_failures.append(('Holding account has insufficient USDC balance', False))
        orchestrator = self._orchestrator()

        transfer = self._initiate(orchestrator, self._claimed_gift())

        self.assertEqual(transfer.status, Transfer.Status.FAILED)
        self.assertEqual(source.count('burn'), 1)
        self.assertIn('insufficient', transfer.failure_reason)

    def test_message_already_received_counts_as_minted(self):
        self.networks['arc-testnet'].already_minted = True
        orchestrator = self._orchestrator()

        transfer = orchestrator.run_until_terminal(self._initiate(orchestrator, self._claimed_gift()))

        self.assertEqual(transfer.status, Transfer.Status.DESTINATION_CONFIRMED)
        self.assertIsNotNone(transfer.completed_at)

    def test_invalid_recipient_address_is_rejected_before_recording(self):
        orchestrator = self._orchestrator()
        gift = self._claimed_gift()
        Gift.objects.filter(pk=gift.pk).update(recipient_address='not-an-address')
        gift.refresh_from_db()

        with self.assertRaises(GiftValidationError):
            self._initiate(orchestrator, gift)
        self.assertEqual(Transfer.objects.count(), 0)

    def test_new_transfer_reuses_confirmed_burn(self):
        orchestrator = self._orchestrator(
            AttestationResult(state=AttestationResult.REJECTED, reason='Attestation status failed'))
        gift = self._claimed_gift()
        previous = orchestrator.run_until_terminal(self._initiate(orchestrator, gift))
        self.assertEqual(previous.status, Transfer.Status.FAILED)
        gift = self.store.fail(gift, 'transfer_rejected')

        retry = orchestrator.initiate(self.escrow.release_authorization(gift), resume_from=previous)

        self.assertEqual(retry.status, Transfer.Status.SOURCE_CONFIRMED)
        self.assertEqual(retry.source_tx_hash, previous.source_tx_hash)
        retry = orchestrator.run_until_terminal(retry)
        self.assertEqual(retry.status, Transfer.Status.DESTINATION_CONFIRMED)
        self.assertEqual(self.networks['ethereum-sepolia'].count('burn'), 1)

    def test_unresolved_previous_burn_blocks_a_new_transfer(self):
        orchestrator = self._orchestrator()
        gift = self._claimed_gift()
        previous = self._initiate(orchestrator, gift)
        Transfer.objects.filter(pk=previous.pk).update(status=Transfer.Status.FAILED)
        previous.refresh_from_db()
        self.networks['ethereum-sepolia'].pending_polls = 1
        gift = self.store.fail(gift, 'transfer_timeout')

        with self.assertRaises(UpstreamError):
            orchestrator.initiate(self.escrow.release_authorization(gift), resume_from=previous)
        self.assertEqual(Transfer.objects.filter(gift=gift).count(), 1)

    def test_mint_that_keeps_reverting_fails_after_the_attempt_limit(self):
        self.networks['arc-testnet'].revert_mints = True
        orchestrator = self._orchestrator(max_attempts=3)
        transfer = self._initiate(orchestrator, self._claimed_gift())

        for _ in range(50):
            transfer = orchestrator.poll_status(transfer.id)
            if transfer.is_terminal:
                break

        self.assertEqual(transfer.status, Transfer.Status.FAILED)
        self.assertEqual(transfer.failure_code, 'transfer_rejected')
        self.assertIn('Mint reverted 3 times', transfer.failure_reason)
        self.assertEqual(self.networks['arc-testnet'].count('mint'), 3)

    def test_unconfigured_network_fails_the_transfer(self):
        orchestrator = self._orchestrator()
        transfer = self._initiate(orchestrator, self._claimed_gift())
        Transfer.objects.filter(pk=transfer.pk).update(source_network='gone-net')

        transfer = orchestrator.poll_status(transfer.id)

        self.assertEqual(transfer.status, Transfer.Status.FAILED)
        self.assertEqual(transfer.failure_code, 'not_configured')
        self.assertEqual(Transfer.objects.get(pk=transfer.pk).status, Transfer.Status.FAILED)

    def test_missing_attestation_client_fails_the_transfer(self):
        orchestrator = self._orchestrator()
        orchestrator.attestation = None
        transfer = self._initiate(orchestrator, self._claimed_gift())

        transfer = orchestrator.run_until_terminal(transfer)

        self.assertEqual(transfer.status, Transfer.Status.FAILED)
        self.assertEqual(transfer.failure_code, 'not_configured')

    def test_stale_poll_keeps_the_newer_stored_phase(self):
        orchestrator = self._orchestrator()
        transfer = self._initiate(orchestrator, self._claimed_gift())
        stale = Transfer.objects.get(pk=transfer.pk)
        orchestrator.poll_status(transfer.id)
        orchestrator.poll_status(transfer.id)
        stored = Transfer.objects.get(pk=transfer.pk)
        self.assertEqual(stored.status, Transfer.Status.ATTESTATION_PENDING)

        with patch.object(Transfer.objects, 'get', side_effect=[stale, stored]):
            result = orchestrator.poll_status(transfer.id)

        self.assertEqual(result.status, Transfer.Status.ATTESTATION_PENDING)
        self.assertEqual(
            Transfer.objects.get(pk=transfer.pk).status, Transfer.Status.ATTESTATION_PENDING)
