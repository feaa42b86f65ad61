"""
Chain handlers for gift settlement networks.
"""
from .base import ChainHandler, ReceiptResult, SubmissionResult
from .evm_chain import EvmChainHandler
from .factory import ChainHandlerFactory

__all__ = [
    'ChainHandler',
    'ReceiptResult',
    'SubmissionResult',
    'EvmChainHandler',
    'ChainHandlerFactory',
]
