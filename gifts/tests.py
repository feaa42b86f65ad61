import json
from unittest.mock import patch

from django.urls import reverse
from eth_account import Account
from eth_account.messages import encode_defunct
from web3 import Web3

from gifts.models import Gift, GiftBatch, RecurringSchedule
from gifts.multisig import approval_message
from gifts.test_coordinator import RECIPIENT, CoordinatorTestCase


class ViewTestCase(CoordinatorTestCase):
    def setUp(self) -> None:
        super().setUp()
        patcher = patch('gifts.views.get_coordinator', return_value=self.coordinator)
        patcher.start()
        self.addCleanup(patcher.stop)

    def post(self, name, payload, **kwargs):
        return self.client.post(
            reverse(name, kwargs=kwargs),
            data=json.dumps(payload),
            content_type='application/json',
        )

    def create_via_api(self, **overrides):
        payload = {
            'recipientHandle': '@alice',
            'amount': '10.00',
            'senderWalletAddress': '0x' + '9' * 40,
            'message': 'Happy birthday',
        }
        payload.update(overrides)
        return self.post('gifts:gift-create', payload)


class GiftViewTests(ViewTestCase):
    def test_health_and_networks(self):
        self.assertEqual(self.client.get(reverse('health')).json()['status'], 'ok')

        body = self.client.get(reverse('gifts:networks')).json()
        names = {n['network'] for n in body['networks']}
        self.assertEqual(names, {'ethereum-sepolia', 'base-sepolia', 'arc-testnet'})

    def test_create_gift_returns_credentials_once(self):
        response = self.create_via_api()

        self.assertEqual(response.status_code, 201)
        body = response.json()
        self.assertTrue(body['success'])
        self.assertTrue(body['funded'])
        self.assertTrue(body['claimUrl'].endswith(f"/claim/{body['claimCode']}"))
        self.assertEqual(len(body['claimSecret']), 12)

        gift = Gift.objects.get(claim_code=body['claimCode'])
        self.assertEqual(gift.amount, 10_000_000)
        self.assertEqual(gift.recipient_handle, 'alice')
        self.assertEqual(gift.source_network, 'ethereum-sepolia')
        self.assertEqual(gift.destination_network, 'arc-testnet')

    def test_float_amount_is_rejected(self):
        response = self.create_via_api(amount=10.5)

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['error'], 'validation_error')
        self.assertEqual(Gift.objects.count(), 0)

    def test_missing_recipient_is_rejected(self):
        response = self.create_via_api(recipientHandle=None)
        self.assertEqual(response.status_code, 400)

    def test_over_precise_amount_is_rejected(self):
        response = self.create_via_api(amount='1.0000001')

        self.assertEqual(response.status_code, 400)
        self.assertIn('decimal places', response.json()['message'])

    def test_claim_lookup_is_sanitized(self):
        code = self.create_via_api().json()['claimCode']

        response = self.client.get(reverse('gifts:claim', kwargs={'code': code}))

        self.assertEqual(response.status_code, 200)
        gift = response.json()['gift']
        self.assertTrue(gift['requiresSecret'])
        self.assertEqual(gift['amount'], '10.00')
        self.assertNotIn('claimSecretHash', gift)
        self.assertNotIn('sha256$', response.content.decode())

    def test_claim_lookup_checks_secret_from_header_only(self):
        created = self.create_via_api().json()
        url = reverse('gifts:claim', kwargs={'code': created['claimCode']})

        wrong = self.client.get(url, HTTP_X_CLAIM_SECRET='nope')
        right = self.client.get(url, HTTP_X_CLAIM_SECRET=created['claimSecret'])
        in_query = self.client.get(url, {'secret': 'nope'})

        self.assertEqual(wrong.status_code, 404)
        self.assertEqual(right.status_code, 200)
        self.assertEqual(in_query.status_code, 200)

    def test_claim_completes_when_waiting(self):
        created = self.create_via_api().json()

        response = self.post(
            'gifts:claim',
            {'secret': created['claimSecret'], 'recipientAddress': RECIPIENT, 'wait': True},
            code=created['claimCode'],
        )

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body['status'], 'completed')
        self.assertEqual(body['transfer']['status'], 'destination-confirmed')

    def test_claim_without_waiting_reports_transferring(self):
        created = self.create_via_api().json()

        response = self.post(
            'gifts:claim',
            {'secret': created['claimSecret'], 'recipientAddress': RECIPIENT},
            code=created['claimCode'],
        )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['status'], 'transferring')
        self.assertIsNotNone(response.json()['transferId'])

    def test_wrong_secret_and_unknown_code_share_a_message(self):
        created = self.create_via_api().json()

        wrong = self.post(
            'gifts:claim', {'secret': 'nope', 'recipientAddress': RECIPIENT},
            code=created['claimCode'])
        unknown = self.post(
            'gifts:claim', {'secret': 'nope', 'recipientAddress': RECIPIENT},
            code='f' * 32)

        self.assertEqual(wrong.status_code, 404)
        self.assertEqual(unknown.status_code, 404)
        self.assertEqual(wrong.json()['message'], unknown.json()['message'])
        self.assertTrue(wrong.json()['retryable'])

    def test_expired_claim_answers_gone(self):
        created = self.create_via_api(expiresInDays=1).json()
        self.clock.advance(days=2)

        response = self.post(
            'gifts:claim',
            {'secret': created['claimSecret'], 'recipientAddress': RECIPIENT},
            code=created['claimCode'],
        )

        self.assertEqual(response.status_code, 410)
        self.assertEqual(response.json()['error'], 'expired')

    def test_second_claim_conflicts(self):
        created = self.create_via_api().json()
        payload = {'secret': created['claimSecret'], 'recipientAddress': RECIPIENT, 'wait': True}
        self.post('gifts:claim', payload, code=created['claimCode'])

        response = self.post('gifts:claim', payload, code=created['claimCode'])

        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()['error'], 'already_claimed')

    def test_status_endpoint_advances_settlement(self):
        created = self.create_via_api().json()
        self.post(
            'gifts:claim',
            {'secret': created['claimSecret'], 'recipientAddress': RECIPIENT},
            code=created['claimCode'],
        )

        status_url = reverse('gifts:status', kwargs={'gift_id': created['giftId']})
        body = None
        for _ in range(10):
            body = self.client.get(status_url).json()
            if body['gift']['status'] == 'completed':
                break

        self.assertEqual(body['gift']['status'], 'completed')
        self.assertIsNotNone(body['gift']['transfer']['destinationTxHash'])

    def test_retry_rejects_gift_that_has_not_failed(self):
        created = self.create_via_api().json()

        response = self.post('gifts:retry', {}, gift_id=created['giftId'])

        self.assertEqual(response.status_code, 400)

    def test_inbox_lists_live_gifts_for_handle(self):
        self.create_via_api()
        self.create_via_api(recipientHandle='bob')

        response = self.client.get(reverse('gifts:inbox'), {'handle': 'alice'})

        gifts = response.json()['gifts']
        self.assertEqual(len(gifts), 1)
        self.assertEqual(gifts[0]['recipientHandle'], 'alice')


class VariantViewTests(ViewTestCase):
    def test_batch_create_and_status(self):
        response = self.post('gifts:batch-create', {
            'senderWalletAddress': '0x' + '9' * 40,
            'companyName': 'Acme',
            'amount': '5',
            'recipients': [
                {'firstName': 'Ann', 'email': 'ann@example.com'},
                {'firstName': 'Ben', 'telegramHandle': '@ben'},
            ],
        })

        self.assertEqual(response.status_code, 201)
        code = response.json()['batchCode']
        self.assertEqual(len(response.json()['gifts']), 2)

        detail = self.client.get(reverse('gifts:batch-detail', kwargs={'batch_code': code})).json()
        self.assertEqual(detail['status'], 'processing')
        self.assertEqual(detail['total'], 2)
        self.assertEqual(detail['amount'], '5.00')

        mine = self.client.get(
            reverse('gifts:batch-detail', kwargs={'batch_code': code}), {'email': 'ann@example.com'})
        self.assertEqual(mine.json()['gift']['recipientEmail'], 'ann@example.com')
        self.assertEqual(GiftBatch.objects.count(), 1)

    def test_sender_dashboard_lists_gifts_and_batches(self):
        sender = '0x' + '9' * 40
        self.create_via_api(senderRef='acme')
        self.post('gifts:batch-create', {
            'senderRef': 'acme',
            'senderWalletAddress': sender,
            'amount': '1',
            'recipients': [{'email': 'ann@example.com'}],
        })

        body = self.client.get(reverse('gifts:inbox'), {'sender': 'acme'}).json()

        self.assertEqual(len(body['gifts']), 2)
        self.assertEqual(len(body['batches']), 1)
        self.assertEqual(body['batches'][0]['status'], 'processing')

    def test_batch_requires_reachable_recipients(self):
        response = self.post('gifts:batch-create', {
            'senderWalletAddress': '0x' + '9' * 40,
            'amount': '5',
            'recipients': [{'firstName': 'Nobody'}],
        })
        self.assertEqual(response.status_code, 400)

    def test_schedule_create_and_cancel(self):
        response = self.post('gifts:schedule-create', {
            'scheduleId': 'weekly-1',
            'senderRef': 'parent',
            'senderWalletAddress': '0x' + '9' * 40,
            'recipientHandle': 'kid',
            'amount': '2.50',
            'intervalSeconds': 604800,
            'maxPayments': 4,
        })
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json()['remainingPayments'], 4)

        cancel = self.post('gifts:schedule-cancel', {'senderRef': 'parent'}, schedule_id='weekly-1')
        self.assertEqual(cancel.json()['status'], 'cancelled')
        self.assertEqual(
            RecurringSchedule.objects.get(schedule_id='weekly-1').status,
            RecurringSchedule.Status.CANCELLED,
        )

        again = self.post('gifts:schedule-cancel', {}, schedule_id='weekly-1')
        self.assertEqual(again.status_code, 409)

    def test_multisig_flow(self):
        initiator, cosigner = Account.create(), Account.create()
        response = self.post('gifts:multisig-create', {
            'recipientEmail': 'vendor@example.com',
            'amount': '20',
            'senderWalletAddress': initiator.address,
            'initiatorAddress': initiator.address,
            'requiredSignatures': 2,
            'signerAddresses': [initiator.address, cosigner.address],
        })
        self.assertEqual(response.status_code, 201)
        body = response.json()
        self.assertEqual(body['status'], 'pending')
        self.assertEqual(body['proposal']['signatures'], 1)

        signed = cosigner.sign_message(encode_defunct(text=approval_message(body['claimCode'])))
        sign = self.post(
            'gifts:multisig-sign',
            {'signerAddress': cosigner.address, 'signature': Web3.to_hex(signed.signature)},
            proposal_id=body['proposal']['id'],
        )

        self.assertEqual(sign.status_code, 200)
        self.assertEqual(sign.json()['proposal']['status'], 'approved')
        self.assertEqual(Gift.objects.get(pk=body['giftId']).status, Gift.Status.ESCROW_FUNDED)

    def test_multisig_rejects_outsider(self):
        initiator, cosigner, outsider = Account.create(), Account.create(), Account.create()
        body = self.post('gifts:multisig-create', {
            'recipientEmail': 'vendor@example.com',
            'amount': '20',
            'senderWalletAddress': initiator.address,
            'initiatorAddress': initiator.address,
            'requiredSignatures': 2,
            'signerAddresses': [initiator.address, cosigner.address],
        }).json()

        signed = outsider.sign_message(encode_defunct(text=approval_message(body['claimCode'])))
        response = self.post(
            'gifts:multisig-sign',
            {'signerAddress': outsider.address, 'signature': Web3.to_hex(signed.signature)},
            proposal_id=body['proposal']['id'],
        )

        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.json()['error'], 'unauthorized_signer')
