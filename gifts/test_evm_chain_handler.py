import unittest
from unittest.mock import MagicMock

from eth_account import Account
from hexbytes import HexBytes
from web3.exceptions import ContractLogicError, TransactionNotFound

from gifts.chain_handlers import ChainHandlerFactory, EvmChainHandler, ReceiptResult

USDC = '0x1c7D4B196Cb0C7B01d743Fbc6116a902379C7238'
MESSENGER = '0x8FE6B999Dc680CcFDD5Bf7EB0974218be2542DAA'
TRANSMITTER = '0xE737e5cEBEEBa77EFE34D4aa090756590b1CE275'
RECIPIENT = '0x' + 'ab' * 20


class EvmChainHandlerTests(unittest.TestCase):
    def setUp(self) -> None:
        self.signer = Account.create('gift-escrow-holding-account')
        self.handler = ChainHandlerFactory.create('ethereum-sepolia', {
            'chain_id': 11155111,
            'domain': 0,
            'rpc_url': 'http://localhost:8545',
            'usdc_address': USDC,
            'token_messenger': MESSENGER,
            'message_transmitter': TRANSMITTER,
            'signer_private_key': self.signer.key.hex(),
            'signer_address': self.signer.address,
        })
        self.web3 = MagicMock()
        self.web3.is_connected.return_value = True
        self.web3.eth.account.from_key.return_value.address = self.signer.address
        self.web3.eth.get_transaction_count.return_value = 7
        self.web3.eth.gas_price = 10
        self.web3.eth.send_raw_transaction.return_value = HexBytes(b'\x12' * 32)
        self.handler._web3 = self.web3

    def _contract_fn(self, method: str):
        fn = MagicMock()
        fn.estimate_gas.return_value = 60000
        getattr(self.web3.eth.contract.return_value.functions, method).return_value = fn
        return fn

    def test_factory_builds_evm_handler_with_network_name(self):
        self.assertIsInstance(self.handler, EvmChainHandler)
        self.assertEqual(self.handler.chain_name, 'ethereum-sepolia')
        self.assertEqual(self.handler.domain, 0)
        self.assertTrue(self.handler.is_configured())

    def test_factory_rejects_unknown_network(self):
        with self.assertRaises(ValueError):
            ChainHandlerFactory.create('solana', {})

    def test_registered_handler_is_created_for_new_network(self):
        class DevnetHandler(EvmChainHandler):
            pass

        ChainHandlerFactory.register('Local-Devnet', DevnetHandler)
        self.addCleanup(ChainHandlerFactory._handlers.pop, 'local-devnet')

        self.assertIn('local-devnet', ChainHandlerFactory.get_supported_networks())
        handler = ChainHandlerFactory.create('local-devnet', {})
        self.assertIsInstance(handler, DevnetHandler)
        self.assertEqual(handler.chain_name, 'local-devnet')

    def test_validate_address(self):
        self.assertTrue(self.handler.validate_address(RECIPIENT))
        self.assertFalse(self.handler.validate_address('0x1234'))
        self.assertFalse(self.handler.validate_address('not-an-address'))

    def test_mint_recipient_is_left_padded(self):
        encoded = EvmChainHandler.address_to_bytes32(RECIPIENT)
        self.assertEqual(len(encoded), 32)
        self.assertEqual(encoded[:12], bytes(12))
        self.assertEqual(encoded[12:], bytes.fromhex('ab' * 20))

    def test_transfer_is_signed_and_broadcast(self):
        fn = self._contract_fn('transfer')

        result = self.handler.submit_transfer(RECIPIENT, 1_000_000)

        self.assertTrue(result.success)
        self.assertEqual(result.transaction_hash, '0x' + '12' * 32)
        tx_params = fn.build_transaction.call_args[0][0]
        self.assertEqual(tx_params['chainId'], 11155111)
        self.assertEqual(tx_params['nonce'], 7)
        self.assertEqual(tx_params['gas'], 250000)

    def test_simulated_revert_is_not_retryable(self):
        fn = self._contract_fn('transfer')
        fn.call.side_effect = ContractLogicError('execution reverted: ERC20: transfer amount exceeds balance')

        result = self.handler.submit_transfer(RECIPIENT, 1_000_000)

        self.assertFalse(result.success)
        self.assertFalse(result.retryable)
        self.assertEqual(result.error_reason, 'Holding account has insufficient USDC balance')
        self.web3.eth.send_raw_transaction.assert_not_called()

    def test_unreachable_rpc_is_retryable(self):
        self._contract_fn('transfer')
        self.web3.is_connected.return_value = False

        result = self.handler.submit_transfer(RECIPIENT, 1_000_000)

        self.assertFalse(result.success)
        self.assertTrue(result.retryable)

    def test_unconfigured_holding_account_fails_fast(self):
        handler = ChainHandlerFactory.create(
            'arc-testnet', {'rpc_url': 'http://localhost:8545', 'usdc_address': USDC})
        handler._web3 = self.web3
        self._contract_fn('transfer')

        result = handler.submit_transfer(RECIPIENT, 1)

        self.assertFalse(result.success)
        self.assertIn('not configured', result.error_reason)

    def test_burn_approves_messenger_when_allowance_is_short(self):
        self.web3.eth.contract.return_value.functions.allowance.return_value.call.return_value = 0
        approve = self._contract_fn('approve')
        burn = self._contract_fn('depositForBurn')
        self.web3.eth.wait_for_transaction_receipt.return_value.status = 1

        result = self.handler.submit_burn(5_000_000, 26, RECIPIENT)

        self.assertTrue(result.success)
        approve.build_transaction.assert_called_once()
        burn.build_transaction.assert_called_once()
        args = self.web3.eth.contract.return_value.functions.depositForBurn.call_args[0]
        self.assertEqual(args[0], 5_000_000)
        self.assertEqual(args[1], 26)
        self.assertEqual(args[2], EvmChainHandler.address_to_bytes32(RECIPIENT))

    def test_mint_of_already_received_message_counts_as_success(self):
        mint = self._contract_fn('receiveMessage')
        mint.call.side_effect = ContractLogicError('execution reverted: Nonce already used')

        result = self.handler.submit_mint('0x' + 'ab' * 32, '0x' + 'cd' * 65)

        self.assertTrue(result.success)
        self.assertTrue(result.details['already_minted'])
        self.web3.eth.send_raw_transaction.assert_not_called()

    def test_receipt_states(self):
        self.web3.eth.get_transaction_receipt.side_effect = TransactionNotFound('not yet')
        self.assertEqual(self.handler.get_receipt('0xabc').state, ReceiptResult.PENDING)

        self.web3.eth.get_transaction_receipt.side_effect = None
        self.web3.eth.get_transaction_receipt.return_value = MagicMock(status=0)
        self.assertTrue(self.handler.get_receipt('0xabc').reverted)

        self.web3.eth.get_transaction_receipt.return_value = MagicMock(status=1, blockNumber=10, gasUsed=21000)
        receipt = self.handler.get_receipt('0xabc')
        self.assertTrue(receipt.confirmed)
        self.assertEqual(receipt.details['block'], 10)
