import uuid

from django.db import models


class Gift(models.Model):
    class Status(models.TextChoices):
        PENDING = 'pending', 'Pending'
        ESCROW_FUNDED = 'escrow_funded', 'Escrow funded'
        CLAIMED = 'claimed', 'Claimed'
        TRANSFERRING = 'transferring', 'Transferring'
        COMPLETED = 'completed', 'Completed'
        EXPIRED = 'expired', 'Expired'
        FAILED = 'failed', 'Failed'

    class Condition(models.TextChoices):
        NONE = 'none', 'None'
        TIME_LOCKED = 'time_locked', 'Time locked'

    TERMINAL_STATUSES = (Status.COMPLETED, Status.EXPIRED, Status.FAILED)
    EXPIRABLE_STATUSES = (Status.PENDING, Status.ESCROW_FUNDED)

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    claim_code = models.CharField(max_length=64, unique=True)
    claim_secret_hash = models.CharField(max_length=128, blank=True, null=True)

    sender_ref = models.CharField(max_length=128, blank=True, default='')
    sender_wallet_address = models.CharField(max_length=128, blank=True, default='')
    recipient_handle = models.CharField(max_length=128, blank=True, default='')
    recipient_email = models.CharField(max_length=254, blank=True, default='')
    recipient_name = models.CharField(max_length=255, blank=True, default='')
    recipient_address = models.CharField(max_length=128, blank=True, null=True)

    # Smallest denomination of the stable currency (6 decimals for USDC).
    amount = models.BigIntegerField()
    source_network = models.CharField(max_length=32)
    destination_network = models.CharField(max_length=32)
    message = models.TextField(blank=True, default='')

    status = models.CharField(
        max_length=16,
        choices=Status.choices,
        default=Status.PENDING,
    )
    condition_type = models.CharField(
        max_length=16,
        choices=Condition.choices,
        default=Condition.NONE,
    )
    unlock_at = models.DateTimeField(blank=True, null=True)
    expires_at = models.DateTimeField(blank=True, null=True)
    failure_reason = models.TextField(blank=True, default='')

    transfer = models.ForeignKey(
        'Transfer',
        on_delete=models.SET_NULL,
        related_name='+',
        blank=True,
        null=True,
    )
    batch = models.ForeignKey(
        'GiftBatch',
        on_delete=models.PROTECT,
        related_name='gifts',
        blank=True,
        null=True,
    )
    schedule = models.ForeignKey(
        'RecurringSchedule',
        on_delete=models.PROTECT,
        related_name='gifts',
        blank=True,
        null=True,
    )

    created_at = models.DateTimeField()
    updated_at = models.DateTimeField(auto_now=True)
    claimed_at = models.DateTimeField(blank=True, null=True)
    completed_at = models.DateTimeField(blank=True, null=True)

    class Meta:
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['status', 'expires_at'], name='gift_status_expiry_idx'),
            models.Index(fields=['recipient_handle'], name='gift_recipient_handle_idx'),
            models.Index(fields=['sender_ref'], name='gift_sender_idx'),
        ]

    def __str__(self) -> str:
        return f'Gift {self.claim_code[:8]}… ({self.status})'

    @property
    def requires_secret(self) -> bool:
        return bool(self.claim_secret_hash)

    @property
    def is_terminal(self) -> bool:
        return self.status in self.TERMINAL_STATUSES

    @property
    def is_cross_network(self) -> bool:
        return self.source_network != self.destination_network

    def is_expired_at(self, now) -> bool:
        return self.expires_at is not None and self.expires_at <= now


class Transfer(models.Model):
    class Status(models.TextChoices):
        INITIATED = 'initiated', 'Initiated'
        SOURCE_CONFIRMED = 'source-confirmed', 'Source confirmed'
        ATTESTATION_PENDING = 'attestation-pending', 'Attestation pending'
        ATTESTATION_RECEIVED = 'attestation-received', 'Attestation received'
        DESTINATION_CONFIRMED = 'destination-confirmed', 'Destination confirmed'
        FAILED = 'failed', 'Failed'

    class Mode(models.TextChoices):
        SAME_NETWORK = 'same_network', 'Same network'
        CROSS_NETWORK = 'cross_network', 'Cross network'

    TERMINAL_STATUSES = (Status.DESTINATION_CONFIRMED, Status.FAILED)

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    gift = models.ForeignKey(Gift, on_delete=models.PROTECT, related_name='transfers')
    mode = models.CharField(max_length=16, choices=Mode.choices)
    source_network = models.CharField(max_length=32)
    destination_network = models.CharField(max_length=32)
    amount = models.BigIntegerField()
    recipient_address = models.CharField(max_length=128)

    status = models.CharField(
        max_length=24,
        choices=Status.choices,
        default=Status.INITIATED,
    )
    # EVM tx hash is 66 chars (0x + 64 hex).
    source_tx_hash = models.CharField(max_length=128, blank=True, null=True)
    message = models.TextField(blank=True, default='')
    attestation = models.TextField(blank=True, default='')
    destination_tx_hash = models.CharField(max_length=128, blank=True, null=True)
    attempts = models.PositiveIntegerField(default=0)
    failure_code = models.CharField(max_length=32, blank=True, default='')
    failure_reason = models.TextField(blank=True, default='')

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)
    completed_at = models.DateTimeField(blank=True, null=True)

    class Meta:
        ordering = ['-created_at']

    def __str__(self) -> str:
        return f'Transfer {self.id} ({self.status})'

    @property
    def is_terminal(self) -> bool:
        return self.status in self.TERMINAL_STATUSES

    @property
    def burn_confirmed(self) -> bool:
        return self.mode == self.Mode.CROSS_NETWORK and self.status in (
            self.Status.SOURCE_CONFIRMED,
            self.Status.ATTESTATION_PENDING,
            self.Status.ATTESTATION_RECEIVED,
            self.Status.DESTINATION_CONFIRMED,
        )


class GiftBatch(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    batch_code = models.CharField(max_length=32, unique=True)
    sender_ref = models.CharField(max_length=128, blank=True, default='')
    sender_name = models.CharField(max_length=255, blank=True, default='')
    company_name = models.CharField(max_length=255, blank=True, default='')
    sender_wallet_address = models.CharField(max_length=128, blank=True, default='')
    amount = models.BigIntegerField()
    source_network = models.CharField(max_length=32)
    destination_network = models.CharField(max_length=32)
    message = models.TextField(blank=True, default='')
    expires_at = models.DateTimeField(blank=True, null=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-created_at']

    def __str__(self) -> str:
        return f'Batch {self.batch_code}'


class RecurringSchedule(models.Model):
    class Status(models.TextChoices):
        ACTIVE = 'active', 'Active'
        COMPLETED = 'completed', 'Completed'
        CANCELLED = 'cancelled', 'Cancelled'

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    schedule_id = models.CharField(max_length=128, unique=True)
    sender_ref = models.CharField(max_length=128, blank=True, default='')
    sender_wallet_address = models.CharField(max_length=128, blank=True, default='')
    recipient_handle = models.CharField(max_length=128, blank=True, default='')
    recipient_email = models.CharField(max_length=254, blank=True, default='')
    amount = models.BigIntegerField()
    source_network = models.CharField(max_length=32)
    destination_network = models.CharField(max_length=32)
    message = models.TextField(blank=True, default='')
    with_secret = models.BooleanField(default=True)

    interval_seconds = models.PositiveIntegerField()
    next_run_at = models.DateTimeField()
    end_at = models.DateTimeField(blank=True, null=True)
    # Null means "until end_at".
    remaining_payments = models.PositiveIntegerField(blank=True, null=True)
    payments_made = models.PositiveIntegerField(default=0)
    status = models.CharField(
        max_length=16,
        choices=Status.choices,
        default=Status.ACTIVE,
    )
    last_error = models.TextField(blank=True, default='')
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['next_run_at']
        indexes = [
            models.Index(fields=['status', 'next_run_at'], name='schedule_due_idx'),
        ]

    def __str__(self) -> str:
        return f'Schedule {self.schedule_id} ({self.status})'


class MultiSigProposal(models.Model):
    class Status(models.TextChoices):
        OPEN = 'open', 'Open'
        APPROVED = 'approved', 'Approved'
        CANCELLED = 'cancelled', 'Cancelled'

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    gift = models.OneToOneField(Gift, on_delete=models.PROTECT, related_name='multisig')
    initiator_address = models.CharField(max_length=128)
    required_signatures = models.PositiveIntegerField()
    signer_addresses = models.JSONField()
    deadline = models.DateTimeField(blank=True, null=True)
    status = models.CharField(
        max_length=16,
        choices=Status.choices,
        default=Status.OPEN,
    )
    created_at = models.DateTimeField(auto_now_add=True)
    approved_at = models.DateTimeField(blank=True, null=True)

    class Meta:
        ordering = ['-created_at']

    def __str__(self) -> str:
        return f'Proposal {self.id} ({self.status})'

    @property
    def signature_count(self) -> int:
        return self.signatures.count()

    @property
    def threshold_met(self) -> bool:
        return self.signature_count >= self.required_signatures


class MultiSigSignature(models.Model):
    proposal = models.ForeignKey(
        MultiSigProposal, on_delete=models.CASCADE, related_name='signatures')
    signer_address = models.CharField(max_length=128)
    signature = models.CharField(max_length=132, blank=True, default='')
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['created_at']
        constraints = [
            models.UniqueConstraint(
                fields=['proposal', 'signer_address'], name='unique_proposal_signer'),
        ]
