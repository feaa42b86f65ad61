"""
Chain handler for EVM networks settled through CCTP v2.

Same-network gifts are a plain ERC-20 transfer from the holding account.
Cross-network gifts burn through ``TokenMessengerV2.depositForBurn`` on the
source network and mint through ``MessageTransmitterV2.receiveMessage`` on
the destination network.
"""
from typing import Dict, Any, Callable, Optional

from hexbytes import HexBytes
from loguru import logger
from web3 import Web3, HTTPProvider
from web3.exceptions import (
    BadFunctionCallOutput,
    ContractLogicError,
    TimeExhausted,
    TransactionNotFound,
)

from .base import ChainHandler, ReceiptResult, SubmissionResult


ERC20_ABI = [
    {
        'inputs': [{'name': 'account', 'type': 'address'}],
        'name': 'balanceOf',
        'outputs': [{'name': '', 'type': 'uint256'}],
        'stateMutability': 'view',
        'type': 'function',
    },
    {
        'inputs': [
            {'name': 'owner', 'type': 'address'},
            {'name': 'spender', 'type': 'address'},
        ],
        'name': 'allowance',
        'outputs': [{'name': '', 'type': 'uint256'}],
        'stateMutability': 'view',
        'type': 'function',
    },
    {
        'inputs': [
            {'name': 'spender', 'type': 'address'},
            {'name': 'value', 'type': 'uint256'},
        ],
        'name': 'approve',
        'outputs': [{'name': '', 'type': 'bool'}],
        'stateMutability': 'nonpayable',
        'type': 'function',
    },
    {
        'inputs': [
            {'name': 'to', 'type': 'address'},
            {'name': 'value', 'type': 'uint256'},
        ],
        'name': 'transfer',
        'outputs': [{'name': '', 'type': 'bool'}],
        'stateMutability': 'nonpayable',
        'type': 'function',
    },
]

TOKEN_MESSENGER_V2_ABI = [
    {
        'inputs': [
            {'name': 'amount', 'type': 'uint256'},
            {'name': 'destinationDomain', 'type': 'uint32'},
            {'name': 'mintRecipient', 'type': 'bytes32'},
            {'name': 'burnToken', 'type': 'address'},
            {'name': 'destinationCaller', 'type': 'bytes32'},
            {'name': 'maxFee', 'type': 'uint256'},
            {'name': 'minFinalityThreshold', 'type': 'uint32'},
        ],
        'name': 'depositForBurn',
        'outputs': [],
        'stateMutability': 'nonpayable',
        'type': 'function',
    }
]

MESSAGE_TRANSMITTER_V2_ABI = [
    {
        'inputs': [
            {'name': 'message', 'type': 'bytes'},
            {'name': 'attestation', 'type': 'bytes'},
        ],
        'name': 'receiveMessage',
        'outputs': [{'name': 'success', 'type': 'bool'}],
        'stateMutability': 'nonpayable',
        'type': 'function',
    }
]

ZERO_BYTES32 = b'\x00' * 32


class _NotBroadcast(Exception):
    """Failure before the transaction left this process."""


class EvmChainHandler(ChainHandler):
    """Handler for EVM networks (Ethereum Sepolia, Base Sepolia, Arc)."""

    def __init__(self, config: Dict[str, Any]):
        super().__init__(config)
        self.network = config.get('network', '')
        self.rpc_url = config.get('rpc_url', '')
        self.chain_id = int(config.get('chain_id', 0))
        self.signer_private_key = config.get('signer_private_key', '')
        self.usdc_address = config.get('usdc_address', '')
        self.token_messenger = config.get('token_messenger', '')
        self.message_transmitter = config.get('message_transmitter', '')
        self.gas_limit = config.get('gas_limit', 250000)
        self.tx_timeout_seconds = config.get('tx_timeout_seconds', 120)
        self.max_fee = config.get('max_fee', 0)
        self.min_finality_threshold = config.get('min_finality_threshold', 2000)
        self._web3: Optional[Web3] = None

    @property
    def chain_name(self) -> str:
        return self.network

    @property
    def web3(self) -> Web3:
        if self._web3 is None:
            self._web3 = Web3(HTTPProvider(
                self.rpc_url,
                request_kwargs={'timeout': self.tx_timeout_seconds},
            ))
        return self._web3

    def validate_address(self, address: str) -> bool:
        """Validate Ethereum address format."""
        try:
            Web3.to_checksum_address(address)
            return True
        except (ValueError, TypeError):
            return False

    def _normalize_address(self, address: str) -> str:
        """Normalize to checksum address."""
        return Web3.to_checksum_address(address)

    @staticmethod
    def address_to_bytes32(address: str) -> bytes:
        """Left-pad a 20-byte address into a CCTP bytes32 recipient."""
        raw = HexBytes(Web3.to_checksum_address(address))
        return bytes(12) + bytes(raw)

    def _usdc(self):
        return self.web3.eth.contract(
            address=self._normalize_address(self.usdc_address),
            abi=ERC20_ABI,
        )

    def get_native_balance(self, address: str) -> int:
        return int(self.web3.eth.get_balance(self._normalize_address(address)))

    def get_token_balance(self, address: str) -> int:
        return int(
            self._usdc().functions.balanceOf(self._normalize_address(address)).call()
        )

    def submit_transfer(self, recipient: str, amount: int) -> SubmissionResult:
        """
        Execute a USDC transfer from the holding account on this network.
        """
        try:
            transfer_fn = self._usdc().functions.transfer(
                self._normalize_address(recipient), int(amount))
        except Exception as exc:
            return SubmissionResult(
                success=False,
                error_reason=f'Invalid transfer parameters: {exc}',
            )
        return self._send(transfer_fn, 'transfer')

    def submit_burn(
        self,
        amount: int,
        destination_domain: int,
        recipient: str,
    ) -> SubmissionResult:
        """
        Burn USDC through TokenMessengerV2 for minting on another domain.
        """
        try:
            approval = self._ensure_allowance(int(amount))
            if approval is not None and not approval.success:
                return approval

            messenger = self.web3.eth.contract(
                address=self._normalize_address(self.token_messenger),
                abi=TOKEN_MESSENGER_V2_ABI,
            )
            burn_fn = messenger.functions.depositForBurn(
                int(amount),
                int(destination_domain),
                self.address_to_bytes32(recipient),
                self._normalize_address(self.usdc_address),
                ZERO_BYTES32,
                int(self.max_fee),
                int(self.min_finality_threshold),
            )
        except Exception as exc:
            logger.warning('{} burn preparation failed: {}', self.network, exc)
            return SubmissionResult(
                success=False,
                error_reason=f'Burn preparation failed: {exc}',
                retryable=True,
            )
        return self._send(burn_fn, 'burn')

    def submit_mint(self, message: str, attestation: str) -> SubmissionResult:
        """
        Mint USDC by relaying an attested message to MessageTransmitterV2.
        """
        try:
            transmitter = self.web3.eth.contract(
                address=self._normalize_address(self.message_transmitter),
                abi=MESSAGE_TRANSMITTER_V2_ABI,
            )
            mint_fn = transmitter.functions.receiveMessage(
                HexBytes(message), HexBytes(attestation))
        except Exception as exc:
            return SubmissionResult(
                success=False,
                error_reason=f'Invalid mint parameters: {exc}',
                retryable=True,
            )
        return self._send(mint_fn, 'mint', on_revert=self._already_minted)

    def get_receipt(self, tx_hash: str) -> ReceiptResult:
        try:
            receipt = self.web3.eth.get_transaction_receipt(tx_hash)
        except TransactionNotFound:
            return ReceiptResult(state=ReceiptResult.PENDING, transaction_hash=tx_hash)

        if receipt.status != 1:
            return ReceiptResult(
                state=ReceiptResult.REVERTED,
                transaction_hash=tx_hash,
                error_reason='Transaction reverted on-chain',
            )
        return ReceiptResult(
            state=ReceiptResult.CONFIRMED,
            transaction_hash=tx_hash,
            details={
                'block': receipt.blockNumber,
                'gas_used': receipt.gasUsed,
            },
        )

    def _ensure_allowance(self, amount: int) -> Optional[SubmissionResult]:
        owner = self._normalize_address(self.holding_address)
        spender = self._normalize_address(self.token_messenger)
        allowance = self._usdc().functions.allowance(owner, spender).call()
        if int(allowance) >= amount:
            return None

        logger.info('{} approving TokenMessenger for {} units', self.network, amount)
        approve_fn = self._usdc().functions.approve(spender, amount)
        result = self._send(approve_fn, 'approve')
        if not result.success:
            return result
        try:
            receipt = self.web3.eth.wait_for_transaction_receipt(
                result.transaction_hash, timeout=self.tx_timeout_seconds)
        except TimeExhausted:
            return SubmissionResult(
                success=False,
                transaction_hash=result.transaction_hash,
                error_reason='Allowance approval not confirmed in time',
                retryable=True,
            )
        if receipt.status != 1:
            return SubmissionResult(
                success=False,
                transaction_hash=result.transaction_hash,
                error_reason='Allowance approval reverted on-chain',
            )
        return result

    @staticmethod
    def _already_minted(exc: ContractLogicError) -> Optional[SubmissionResult]:
        if 'nonce already used' in str(exc).lower():
            return SubmissionResult(success=True, details={'already_minted': True})
        return None

    def _send(
        self,
        contract_fn,
        action: str,
        on_revert: Optional[Callable[[ContractLogicError], Optional[SubmissionResult]]] = None,
    ) -> SubmissionResult:
        if not self.is_configured():
            return SubmissionResult(
                success=False,
                error_reason=f'{self.network} holding account not configured',
            )

        try:
            try:
                if not self.web3.is_connected():
                    raise _NotBroadcast('Unable to connect to RPC endpoint')

                account = self.web3.eth.account.from_key(self.signer_private_key)
                signer_address = self._normalize_address(account.address)

                # Pre-flight simulation
                try:
                    contract_fn.call({'from': signer_address})
                except ContractLogicError as exc:
                    if on_revert is not None:
                        handled = on_revert(exc)
                        if handled is not None:
                            return handled
                    error_msg = self._map_contract_error(exc)
                    logger.error('{} {} simulation failed: {}', self.network, action, error_msg)
                    return SubmissionResult(success=False, error_reason=error_msg)
                except BadFunctionCallOutput:
                    # Some USDC implementations don't return bool, continue anyway
                    logger.warning('{} {} simulation returned empty data, continuing',
                                   self.network, action)

                try:
                    estimated_gas = contract_fn.estimate_gas({'from': signer_address})
                except Exception:
                    estimated_gas = self.gas_limit

                tx_params = {
                    'chainId': self.chain_id,
                    'from': signer_address,
                    'nonce': self.web3.eth.get_transaction_count(signer_address, 'pending'),
                    'gas': max(estimated_gas, self.gas_limit),
                    'gasPrice': self.web3.eth.gas_price,
                }
                transaction = contract_fn.build_transaction(tx_params)
                signed = self.web3.eth.account.sign_transaction(
                    transaction, private_key=self.signer_private_key)
            except _NotBroadcast:
                raise
            except Exception as exc:
                raise _NotBroadcast(str(exc)) from exc

            tx_hash = self.web3.eth.send_raw_transaction(signed.raw_transaction)
            logger.info('{} {} transaction submitted: {}', self.network, action, tx_hash.hex())
            return SubmissionResult(success=True, transaction_hash=self._hex(tx_hash))

        except _NotBroadcast as exc:
            logger.warning('{} {} not broadcast: {}', self.network, action, exc)
            return SubmissionResult(
                success=False,
                error_reason=f'{action} not submitted: {exc}',
                retryable=True,
            )
        except Exception as e:
            logger.error('{} {} submission error: {}', self.network, action, e)
            return SubmissionResult(
                success=False,
                error_reason=f'{action} submission error: {str(e)}',
            )

    @staticmethod
    def _hex(value) -> str:
        text = HexBytes(value).hex()
        return text if text.startswith('0x') else f'0x{text}'

    def _map_contract_error(self, exc: ContractLogicError) -> str:
        """Map contract errors to user-friendly messages."""
        message = str(exc).lower()
        if 'amount exceeds balance' in message or 'insufficient balance' in message:
            return 'Holding account has insufficient USDC balance'
        if 'insufficient funds' in message:
            return 'Holding account has insufficient native token for gas'
        if 'invalid attestation' in message or 'invalid signature' in message:
            return 'Attestation rejected by message transmitter'
        return 'Transaction reverted on-chain'
