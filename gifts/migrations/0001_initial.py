import uuid

import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):
    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="GiftBatch",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("batch_code", models.CharField(max_length=32, unique=True)),
                ("sender_ref", models.CharField(blank=True, default="", max_length=128)),
                ("sender_name", models.CharField(blank=True, default="", max_length=255)),
                ("company_name", models.CharField(blank=True, default="", max_length=255)),
                ("sender_wallet_address", models.CharField(blank=True, default="", max_length=128)),
                ("amount", models.BigIntegerField()),
                ("source_network", models.CharField(max_length=32)),
                ("destination_network", models.CharField(max_length=32)),
                ("message", models.TextField(blank=True, default="")),
                ("expires_at", models.DateTimeField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
            ],
            options={
                "ordering": ["-created_at"],
            },
        ),
        migrations.CreateModel(
            name="RecurringSchedule",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("schedule_id", models.CharField(max_length=128, unique=True)),
                ("sender_ref", models.CharField(blank=True, default="", max_length=128)),
                ("sender_wallet_address", models.CharField(blank=True, default="", max_length=128)),
                ("recipient_handle", models.CharField(blank=True, default="", max_length=128)),
                ("recipient_email", models.CharField(blank=True, default="", max_length=254)),
                ("amount", models.BigIntegerField()),
                ("source_network", models.CharField(max_length=32)),
                ("destination_network", models.CharField(max_length=32)),
                ("message", models.TextField(blank=True, default="")),
                ("with_secret", models.BooleanField(default=True)),
                ("interval_seconds", models.PositiveIntegerField()),
                ("next_run_at", models.DateTimeField()),
                ("end_at", models.DateTimeField(blank=True, null=True)),
                ("remaining_payments", models.PositiveIntegerField(blank=True, null=True)),
                ("payments_made", models.PositiveIntegerField(default=0)),
                (
                    "status",
                    models.CharField(
                        choices=[("active", "Active"), ("completed", "Completed"), ("cancelled", "Cancelled")],
                        default="active",
                        max_length=16,
                    ),
                ),
                ("last_error", models.TextField(blank=True, default="")),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={
                "ordering": ["next_run_at"],
                "indexes": [models.Index(fields=["status", "next_run_at"], name="schedule_due_idx")],
            },
        ),
        migrations.CreateModel(
            name="Gift",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("claim_code", models.CharField(max_length=64, unique=True)),
                ("claim_secret_hash", models.CharField(blank=True, max_length=128, null=True)),
                ("sender_ref", models.CharField(blank=True, default="", max_length=128)),
                ("sender_wallet_address", models.CharField(blank=True, default="", max_length=128)),
                ("recipient_handle", models.CharField(blank=True, default="", max_length=128)),
                ("recipient_email", models.CharField(blank=True, default="", max_length=254)),
                ("recipient_name", models.CharField(blank=True, default="", max_length=255)),
                ("recipient_address", models.CharField(blank=True, max_length=128, null=True)),
                ("amount", models.BigIntegerField()),
                ("source_network", models.CharField(max_length=32)),
                ("destination_network", models.CharField(max_length=32)),
                ("message", models.TextField(blank=True, default="")),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("escrow_funded", "Escrow funded"),
                            ("claimed", "Claimed"),
                            ("transferring", "Transferring"),
                            ("completed", "Completed"),
                            ("expired", "Expired"),
                            ("failed", "Failed"),
                        ],
                        default="pending",
                        max_length=16,
                    ),
                ),
                (
                    "condition_type",
                    models.CharField(
                        choices=[("none", "None"), ("time_locked", "Time locked")],
                        default="none",
                        max_length=16,
                    ),
                ),
                ("unlock_at", models.DateTimeField(blank=True, null=True)),
                ("expires_at", models.DateTimeField(blank=True, null=True)),
                ("failure_reason", models.TextField(blank=True, default="")),
                ("created_at", models.DateTimeField()),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("claimed_at", models.DateTimeField(blank=True, null=True)),
                ("completed_at", models.DateTimeField(blank=True, null=True)),
                (
                    "batch",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="gifts",
                        to="gifts.giftbatch",
                    ),
                ),
                (
                    "schedule",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="gifts",
                        to="gifts.recurringschedule",
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["status", "expires_at"], name="gift_status_expiry_idx"),
                    models.Index(fields=["recipient_handle"], name="gift_recipient_handle_idx"),
                    models.Index(fields=["sender_ref"], name="gift_sender_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="Transfer",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                (
                    "mode",
                    models.CharField(
                        choices=[("same_network", "Same network"), ("cross_network", "Cross network")],
                        max_length=16,
                    ),
                ),
                ("source_network", models.CharField(max_length=32)),
                ("destination_network", models.CharField(max_length=32)),
                ("amount", models.BigIntegerField()),
                ("recipient_address", models.CharField(max_length=128)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("initiated", "Initiated"),
                            ("source-confirmed", "Source confirmed"),
                            ("attestation-pending", "Attestation pending"),
                            ("attestation-received", "Attestation received"),
                            ("destination-confirmed", "Destination confirmed"),
                            ("failed", "Failed"),
                        ],
                        default="initiated",
                        max_length=24,
                    ),
                ),
                ("source_tx_hash", models.CharField(blank=True, max_length=128, null=True)),
                ("message", models.TextField(blank=True, default="")),
                ("attestation", models.TextField(blank=True, default="")),
                ("destination_tx_hash", models.CharField(blank=True, max_length=128, null=True)),
                ("attempts", models.PositiveIntegerField(default=0)),
                ("failure_code", models.CharField(blank=True, default="", max_length=32)),
                ("failure_reason", models.TextField(blank=True, default="")),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("completed_at", models.DateTimeField(blank=True, null=True)),
                (
                    "gift",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="transfers",
                        to="gifts.gift",
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at"],
            },
        ),
        migrations.AddField(
            model_name="gift",
            name="transfer",
            field=models.ForeignKey(
                blank=True,
                null=True,
                on_delete=django.db.models.deletion.SET_NULL,
                related_name="+",
                to="gifts.transfer",
            ),
        ),
        migrations.CreateModel(
            name="MultiSigProposal",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("initiator_address", models.CharField(max_length=128)),
                ("required_signatures", models.PositiveIntegerField()),
                ("signer_addresses", models.JSONField()),
                ("deadline", models.DateTimeField(blank=True, null=True)),
                (
                    "status",
                    models.CharField(
                        choices=[("open", "Open"), ("approved", "Approved"), ("cancelled", "Cancelled")],
                        default="open",
                        max_length=16,
                    ),
                ),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("approved_at", models.DateTimeField(blank=True, null=True)),
                (
                    "gift",
                    models.OneToOneField(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="multisig",
                        to="gifts.gift",
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at"],
            },
        ),
        migrations.CreateModel(
            name="MultiSigSignature",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("signer_address", models.CharField(max_length=128)),
                ("signature", models.CharField(blank=True, default="", max_length=132)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "proposal",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="signatures",
                        to="gifts.multisigproposal",
                    ),
                ),
            ],
            options={
                "ordering": ["created_at"],
                "constraints": [
                    models.UniqueConstraint(fields=("proposal", "signer_address"), name="unique_proposal_signer"),
                ],
            },
        ),
    ]
