import unittest
from unittest.mock import MagicMock

import requests

from gifts.attestation import AttestationClient, AttestationResult
from gifts.errors import UpstreamError

BURN_TX = '0x' + '5a' * 32


def response(status_code=200, body=None):
    resp = MagicMock()
    resp.status_code = status_code
    resp.ok = 200 <= status_code < 400
    resp.json.return_value = body if body is not None else {}
    return resp


class AttestationClientTests(unittest.TestCase):
    def setUp(self) -> None:
        self.session = MagicMock()
        self.client = AttestationClient('https://iris-api-sandbox.circle.com/', timeout=5, session=self.session)

    def test_queries_messages_by_burn_transaction(self):
        self.session.get.return_value = response(404)

        self.client.fetch(6, BURN_TX)

        self.session.get.assert_called_once_with(
            'https://iris-api-sandbox.circle.com/v2/messages/6',
            params={'transactionHash': BURN_TX},
            timeout=5,
        )

    def test_not_indexed_yet_is_pending(self):
        self.session.get.return_value = response(404)
        self.assertEqual(self.client.fetch(0, BURN_TX).state, AttestationResult.PENDING)

    def test_pending_confirmations_is_pending(self):
        self.session.get.return_value = response(body={
            'messages': [{'status': 'pending_confirmations', 'attestation': 'PENDING', 'message': '0x'}],
        })
        self.assertEqual(self.client.fetch(0, BURN_TX).state, AttestationResult.PENDING)

    def test_complete_attestation_is_returned(self):
        self.session.get.return_value = response(body={
            'messages': [{
                'status': 'complete',
                'message': '0xabcd',
                'attestation': '0xef01',
                'eventNonce': '42',
                'decodedMessage': {'ignored': True},
            }],
        })

        result = self.client.fetch(0, BURN_TX)

        self.assertEqual(result.state, AttestationResult.COMPLETE)
        self.assertEqual(result.message, '0xabcd')
        self.assertEqual(result.attestation, '0xef01')

    def test_unknown_status_is_rejected(self):
        self.session.get.return_value = response(body={'messages': [{'status': 'failed'}]})
        result = self.client.fetch(0, BURN_TX)
        self.assertEqual(result.state, AttestationResult.REJECTED)
        self.assertIn('failed', result.reason)

    def test_throttling_and_server_errors_are_upstream_errors(self):
        for status_code in (429, 500, 503):
            with self.subTest(status=status_code):
                self.session.get.return_value = response(status_code)
                with self.assertRaises(UpstreamError):
                    self.client.fetch(0, BURN_TX)

    def test_transport_failure_is_upstream_error(self):
        self.session.get.side_effect = requests.ConnectionError('connection refused')
        with self.assertRaises(UpstreamError):
            self.client.fetch(0, BURN_TX)

    def test_malformed_body_is_upstream_error(self):
        self.session.get.return_value = response(body={'unexpected': 'shape'})
        with self.assertRaises(UpstreamError):
            self.client.fetch(0, BURN_TX)

    def test_complete_without_attestation_is_upstream_error(self):
        self.session.get.return_value = response(body={'messages': [{'status': 'complete', 'message': '0xab'}]})
        with self.assertRaises(UpstreamError):
            self.client.fetch(0, BURN_TX)
