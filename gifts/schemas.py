"""
Boundary schemas.

Inbound request bodies and the narrow slice of upstream responses the
service consumes. Unknown fields are ignored everywhere.
"""
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class _Schema(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra='ignore')


class GiftCreateRequest(_Schema):
    recipient_handle: Optional[str] = Field(default=None, alias='recipientHandle')
    recipient_email: Optional[str] = Field(default=None, alias='recipientEmail')
    recipient_name: Optional[str] = Field(default=None, alias='recipientName')
    amount: str
    source_network: Optional[str] = Field(default=None, alias='sourceNetwork')
    destination_network: Optional[str] = Field(default=None, alias='destinationNetwork')
    message: Optional[str] = None
    sender_ref: Optional[str] = Field(default=None, alias='senderRef')
    sender_wallet_address: str = Field(alias='senderWalletAddress')
    expires_in_days: Optional[int] = Field(default=None, alias='expiresInDays', ge=0)
    unlock_at: Optional[datetime] = Field(default=None, alias='unlockAt')
    with_secret: bool = Field(default=True, alias='withSecret')

    @field_validator('amount', mode='before')
    @classmethod
    def _amount_as_text(cls, value):
        # Floats would already have lost precision; accept only text or ints.
        if isinstance(value, float):
            raise ValueError('amount must be a decimal string')
        return str(value)

    @model_validator(mode='after')
    def _recipient_present(self):
        if not (self.recipient_handle or self.recipient_email):
            raise ValueError('recipientHandle or recipientEmail is required')
        return self


class ClaimRequest(_Schema):
    secret: Optional[str] = None
    recipient_address: str = Field(alias='recipientAddress')
    wait: bool = False


class BulkRecipient(_Schema):
    first_name: str = Field(default='', alias='firstName')
    last_name: str = Field(default='', alias='lastName')
    email: Optional[str] = None
    telegram_handle: Optional[str] = Field(default=None, alias='telegramHandle')

    @model_validator(mode='after')
    def _reachable(self):
        if not (self.email or self.telegram_handle):
            raise ValueError('each recipient needs an email or telegramHandle')
        return self


class BulkCreateRequest(_Schema):
    sender_ref: Optional[str] = Field(default=None, alias='senderRef')
    sender_name: str = Field(default='', alias='senderName')
    company_name: str = Field(default='', alias='companyName')
    sender_wallet_address: str = Field(alias='senderWalletAddress')
    amount: str
    source_network: Optional[str] = Field(default=None, alias='sourceNetwork')
    destination_network: Optional[str] = Field(default=None, alias='destinationNetwork')
    message: Optional[str] = None
    expires_in_days: Optional[int] = Field(default=None, alias='expiresInDays', ge=0)
    recipients: List[BulkRecipient] = Field(min_length=1)


class RecurringCreateRequest(_Schema):
    schedule_id: str = Field(alias='scheduleId')
    sender_ref: Optional[str] = Field(default=None, alias='senderRef')
    sender_wallet_address: str = Field(alias='senderWalletAddress')
    recipient_handle: Optional[str] = Field(default=None, alias='recipientHandle')
    recipient_email: Optional[str] = Field(default=None, alias='recipientEmail')
    amount: str
    source_network: Optional[str] = Field(default=None, alias='sourceNetwork')
    destination_network: Optional[str] = Field(default=None, alias='destinationNetwork')
    message: Optional[str] = None
    interval_seconds: int = Field(alias='intervalSeconds', gt=0)
    start_at: Optional[datetime] = Field(default=None, alias='startAt')
    end_at: Optional[datetime] = Field(default=None, alias='endAt')
    max_payments: Optional[int] = Field(default=None, alias='maxPayments', gt=0)


class MultiSigCreateRequest(GiftCreateRequest):
    initiator_address: str = Field(alias='initiatorAddress')
    required_signatures: int = Field(alias='requiredSignatures', gt=0)
    signer_addresses: List[str] = Field(alias='signerAddresses', min_length=1)
    deadline: Optional[datetime] = None
    initiator_signature: Optional[str] = Field(default=None, alias='initiatorSignature')

    @model_validator(mode='after')
    def _enough_signers(self):
        if len(set(a.lower() for a in self.signer_addresses)) < self.required_signatures:
            raise ValueError('signerAddresses must hold at least requiredSignatures addresses')
        return self


class SignRequest(_Schema):
    signer_address: str = Field(alias='signerAddress')
    signature: str


class CancelRequest(_Schema):
    requester_address: str = Field(alias='requesterAddress')


# Upstream: Circle Iris attestation API v2


class AttestedMessage(_Schema):
    status: str
    message: Optional[str] = None
    attestation: Optional[str] = None
    event_nonce: Optional[str] = Field(default=None, alias='eventNonce')


class AttestationMessagesResponse(_Schema):
    messages: List[AttestedMessage]
