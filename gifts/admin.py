from django.contrib import admin

from gifts.models import (
    Gift,
    GiftBatch,
    MultiSigProposal,
    MultiSigSignature,
    RecurringSchedule,
    Transfer,
)


@admin.register(Gift)
class GiftAdmin(admin.ModelAdmin):
    list_display = ("claim_code", "recipient_handle", "recipient_email", "amount", "status", "expires_at", "created_at")
    list_filter = ("status", "source_network", "destination_network", "condition_type")
    search_fields = ("claim_code", "recipient_handle", "recipient_email", "sender_ref", "recipient_address")
    exclude = ("claim_secret_hash",)
    readonly_fields = ("status", "transfer")


@admin.register(Transfer)
class TransferAdmin(admin.ModelAdmin):
    list_display = ("id", "gift", "mode", "status", "source_tx_hash", "destination_tx_hash", "attempts", "created_at")
    list_filter = ("status", "mode")
    search_fields = ("source_tx_hash", "destination_tx_hash", "recipient_address")


@admin.register(GiftBatch)
class GiftBatchAdmin(admin.ModelAdmin):
    list_display = ("batch_code", "company_name", "sender_ref", "amount", "created_at")
    search_fields = ("batch_code", "company_name", "sender_ref")


@admin.register(RecurringSchedule)
class RecurringScheduleAdmin(admin.ModelAdmin):
    list_display = ("schedule_id", "recipient_handle", "amount", "status", "next_run_at", "payments_made")
    list_filter = ("status",)
    search_fields = ("schedule_id", "sender_ref", "recipient_handle")


class MultiSigSignatureInline(admin.TabularInline):
    model = MultiSigSignature
    extra = 0


@admin.register(MultiSigProposal)
class MultiSigProposalAdmin(admin.ModelAdmin):
    list_display = ("id", "gift", "initiator_address", "required_signatures", "status", "deadline")
    list_filter = ("status",)
    inlines = [MultiSigSignatureInline]
