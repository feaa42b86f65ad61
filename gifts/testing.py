"""
In-memory stand-ins for networks and the attestation service.

Used by the test suite; injected through the ``handlers`` and
``attestation`` constructor arguments.
"""
import itertools
from collections import deque
from datetime import datetime, timedelta, timezone as datetime_timezone
from typing import Dict, List, Optional

from web3 import Web3

from gifts.attestation import AttestationResult
from gifts.chain_handlers.base import ChainHandler, ReceiptResult, SubmissionResult

NETWORK_DOMAINS = {
    'ethereum-sepolia': 0,
    'base-sepolia': 6,
    'arc-testnet': 26,
}

_tx_counter = itertools.count(1)


def fake_tx_hash() -> str:
    return '0x' + f'{next(_tx_counter):064x}'


class FakeChainHandler(ChainHandler):
    """A network that confirms everything unless told otherwise."""

    def __init__(self, network: str, balance: int = 10**12):
        super().__init__({
            'network': network,
            'domain': NETWORK_DOMAINS.get(network, 99),
            'rpc_url': 'memory://',
            'signer_private_key': 'fake',
            'signer_address': '0x' + '1' * 40,
        })
        self.network = network
        self.balance = balance
        self.receipts: Dict[str, str] = {}
        self.pending_polls = 0
        self.submit_failures: deque = deque()
        self.mint_failures: deque = deque()
        self.already_minted = False
        self.revert_mints = False
        self.calls: List[tuple] = []

    @property
    def chain_name(self) -> str:
        return self.network

    def validate_address(self, address: str) -> bool:
        return bool(address) and Web3.is_address(address)

    def get_native_balance(self, address: str) -> int:
        return 10**18

    def get_token_balance(self, address: str) -> int:
        return self.balance

    def _submit(self, action: str, amount: int = 0) -> SubmissionResult:
        if self.submit_failures:
            reason, retryable = self.submit_failures.popleft()
            return SubmissionResult(success=False, error_reason=reason, retryable=retryable)
        if amount and amount > self.balance:
            return SubmissionResult(success=False, error_reason='transfer amount exceeds balance')
        self.balance -= amount
        tx_hash = fake_tx_hash()
        self.receipts[tx_hash] = ReceiptResult.CONFIRMED
        return SubmissionResult(success=True, transaction_hash=tx_hash, details={'action': action})

    def submit_transfer(self, recipient: str, amount: int) -> SubmissionResult:
        self.calls.append(('transfer', recipient, amount))
        return self._submit('transfer', amount)

    def submit_burn(self, amount: int, destination_domain: int, recipient: str) -> SubmissionResult:
        self.calls.append(('burn', amount, destination_domain, recipient))
        return self._submit('burn', amount)

    def submit_mint(self, message: str, attestation: str) -> SubmissionResult:
        self.calls.append(('mint', message, attestation))
        if self.mint_failures:
            reason = self.mint_failures.popleft()
            return SubmissionResult(success=False, error_reason=reason)
        if self.already_minted:
            return SubmissionResult(success=True, details={'already_minted': True})
        result = self._submit('mint')
        if self.revert_mints and result.success:
            self.receipts[result.transaction_hash] = ReceiptResult.REVERTED
        return result

    def get_receipt(self, tx_hash: str) -> ReceiptResult:
        if self.pending_polls > 0:
            self.pending_polls -= 1
            return ReceiptResult(state=ReceiptResult.PENDING, transaction_hash=tx_hash)
        state = self.receipts.get(tx_hash, ReceiptResult.PENDING)
        return ReceiptResult(
            state=state,
            transaction_hash=tx_hash,
            error_reason='execution reverted' if state == ReceiptResult.REVERTED else None,
        )

    def count(self, action: str) -> int:
        return sum(1 for call in self.calls if call[0] == action)


class FakeNetworks:
    """Callable handler registry: ``FakeNetworks()('arc-testnet')``."""

    def __init__(self, **balances):
        self.handlers = {
            name: FakeChainHandler(name, balance=balances.get(name.replace('-', '_'), 10**12))
            for name in NETWORK_DOMAINS
        }

    def __call__(self, network: str) -> ChainHandler:
        try:
            return self.handlers[network]
        except KeyError:
            raise ValueError(f'Unsupported network: {network}')

    def __getitem__(self, network: str) -> FakeChainHandler:
        return self.handlers[network]


class FakeAttestationClient:
    """Returns queued results, then ``complete``."""

    def __init__(self, *results):
        self.results = deque(results)
        self.requests: List[tuple] = []

    def fetch(self, source_domain: int, burn_tx_hash: str) -> AttestationResult:
        self.requests.append((source_domain, burn_tx_hash))
        if self.results:
            result = self.results.popleft()
            if isinstance(result, Exception):
                raise result
            return result
        return AttestationResult(
            state=AttestationResult.COMPLETE,
            message='0x' + 'ab' * 32,
            attestation='0x' + 'cd' * 65,
        )


class FrozenClock:
    """Controllable replacement for ``timezone.now``."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2026, 1, 1, 12, 0, tzinfo=datetime_timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta) -> None:
        self.now = self.now + timedelta(**delta)
