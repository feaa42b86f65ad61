from django.urls import path

from gifts.views import (
    BalanceView,
    BatchCreateView,
    BatchDetailView,
    GiftClaimView,
    GiftCreateView,
    GiftFundView,
    GiftRetryView,
    GiftStatusView,
    InboxView,
    MultiSigCancelView,
    MultiSigCreateView,
    MultiSigSignView,
    NetworksView,
    ScheduleCancelView,
    ScheduleCreateView,
)

app_name = 'gifts'

urlpatterns = [
    path('networks', NetworksView.as_view(), name='networks'),
    path('balances/<str:network>/<str:address>', BalanceView.as_view(), name='balance'),
    path('gifts', GiftCreateView.as_view(), name='gift-create'),
    path('gifts/inbox', InboxView.as_view(), name='inbox'),
    path('gifts/claim/<str:code>', GiftClaimView.as_view(), name='claim'),
    path('gifts/<uuid:gift_id>/fund', GiftFundView.as_view(), name='fund'),
    path('gifts/<uuid:gift_id>/status', GiftStatusView.as_view(), name='status'),
    path('gifts/<uuid:gift_id>/retry', GiftRetryView.as_view(), name='retry'),
    path('batches', BatchCreateView.as_view(), name='batch-create'),
    path('batches/<str:batch_code>', BatchDetailView.as_view(), name='batch-detail'),
    path('schedules', ScheduleCreateView.as_view(), name='schedule-create'),
    path('schedules/<str:schedule_id>/cancel', ScheduleCancelView.as_view(), name='schedule-cancel'),
    path('multisig', MultiSigCreateView.as_view(), name='multisig-create'),
    path('multisig/<uuid:proposal_id>/sign', MultiSigSignView.as_view(), name='multisig-sign'),
    path('multisig/<uuid:proposal_id>/cancel', MultiSigCancelView.as_view(), name='multisig-cancel'),
]
