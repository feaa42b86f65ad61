"""
HTTP surface of the gift escrow service.
"""
from datetime import timezone as datetime_timezone
from typing import Any, Dict

from django.conf import settings
from django.core.exceptions import PermissionDenied
from django.db import transaction
from django.http import Http404
from loguru import logger
from pydantic import ValidationError as PydanticValidationError
from rest_framework import status
from rest_framework.exceptions import APIException
from rest_framework.response import Response
from rest_framework.views import APIView

from gifts.amounts import from_base_units, to_base_units
from gifts.bulk import BatchRecipient, BulkGiftService
from gifts.chain_handlers import ChainHandlerFactory
from gifts.coordinator import GiftCoordinator, GiftCreated, serialize_gift, serialize_transfer
from gifts.errors import GiftError, NotConfigured, UpstreamError
from gifts.multisig import MultiSigService
from gifts.recurring import RecurringGiftService
from gifts.schemas import (
    BulkCreateRequest,
    CancelRequest,
    ClaimRequest,
    GiftCreateRequest,
    MultiSigCreateRequest,
    RecurringCreateRequest,
    SignRequest,
)
from gifts.store import GiftInput
from gifts.tasks import settle_gift


def get_coordinator() -> GiftCoordinator:
    return GiftCoordinator.from_settings()


def _aware(value):
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=datetime_timezone.utc)
    return value


def _units(amount: str) -> int:
    return to_base_units(amount, settings.GIFTS_STABLECOIN_DECIMALS)


def _networks(body) -> Dict[str, str]:
    return {
        'source_network': body.source_network or settings.GIFTS_DEFAULT_SOURCE_NETWORK,
        'destination_network': body.destination_network or settings.GIFTS_DEFAULT_DESTINATION_NETWORK,
    }


def _created_body(created: GiftCreated) -> Dict[str, Any]:
    return {
        'success': True,
        'giftId': str(created.gift.id),
        'claimUrl': created.claim_url,
        'claimCode': created.gift.claim_code,
        'claimSecret': created.claim_secret,
        'status': created.gift.status,
        'funded': created.funded,
        'fundingError': created.funding_error,
    }


class GiftAPIView(APIView):
    """Base view: typed errors become structured bodies."""

    authentication_classes: list = []
    permission_classes: list = []

    def handle_exception(self, exc):
        if isinstance(exc, PydanticValidationError):
            logger.debug('request validation failed: {}', exc)
            return Response(
                {
                    'success': False,
                    'error': 'validation_error',
                    'message': 'Invalid request.',
                    'details': [
                        {'field': '.'.join(str(p) for p in err['loc']), 'message': err['msg']}
                        for err in exc.errors()
                    ],
                },
                status=status.HTTP_400_BAD_REQUEST,
            )
        if isinstance(exc, GiftError):
            body = GiftCoordinator.describe_error(exc)
            if exc.code == 'validation_error':
                body['message'] = exc.message
            if exc.http_status >= 500:
                logger.error('{} while serving {}: {}', exc.code, self.request.path, exc.message)
            return Response(body, status=exc.http_status)
        if not isinstance(exc, (APIException, Http404, PermissionDenied)):
            logger.exception('unexpected error while serving {}', self.request.path)
            return Response(
                {'success': False, 'error': 'internal_error', 'message': 'Internal error.'},
                status=status.HTTP_500_INTERNAL_SERVER_ERROR,
            )
        return super().handle_exception(exc)


class NetworksView(GiftAPIView):

    def get(self, request, *args, **kwargs):
        networks = [
            {
                'network': name,
                'chainId': config.get('chain_id'),
                'domain': config.get('domain'),
                'explorerUrl': config.get('explorer_url'),
                'configured': bool(config.get('rpc_url') and config.get('signer_address')),
            }
            for name, config in settings.GIFTS_NETWORKS.items()
            if name in ChainHandlerFactory.get_supported_networks()
        ]
        return Response({'networks': networks}, status=status.HTTP_200_OK)


class BalanceView(GiftAPIView):

    def get(self, request, network, address, *args, **kwargs):
        try:
            handler = ChainHandlerFactory.from_settings(network)
        except ValueError as exc:
            raise NotConfigured(str(exc)) from exc
        if not handler.validate_address(address):
            return Response(
                {'success': False, 'error': 'validation_error', 'message': 'Invalid address.'},
                status=status.HTTP_400_BAD_REQUEST,
            )
        try:
            native = handler.get_native_balance(address)
            token = handler.get_token_balance(address)
        except Exception as exc:
            raise UpstreamError(f'Balance query on {network} failed: {exc}') from exc
        return Response(
            {
                'network': handler.chain_name,
                'address': address,
                'native': str(native),
                'stablecoin': from_base_units(token, settings.GIFTS_STABLECOIN_DECIMALS),
                'stablecoinUnits': token,
            },
            status=status.HTTP_200_OK,
        )


class GiftCreateView(GiftAPIView):

    def post(self, request, *args, **kwargs):
        body = GiftCreateRequest.model_validate(request.data)
        coordinator = get_coordinator()
        created = coordinator.create_gift(GiftInput(
            amount=_units(body.amount),
            sender_ref=body.sender_ref or body.sender_wallet_address,
            sender_wallet_address=body.sender_wallet_address,
            recipient_handle=body.recipient_handle or '',
            recipient_email=body.recipient_email or '',
            recipient_name=body.recipient_name or '',
            message=body.message or '',
            expires_at=coordinator.expiry_from_days(body.expires_in_days),
            unlock_at=_aware(body.unlock_at),
            with_secret=body.with_secret,
            **_networks(body),
        ))
        return Response(_created_body(created), status=status.HTTP_201_CREATED)


class GiftClaimView(GiftAPIView):

    def get(self, request, code, *args, **kwargs):
        # Secrets are read from a header, never from the query string.
        gift = get_coordinator().lookup(code, secret=request.headers.get('X-Claim-Secret') or None)
        return Response({'success': True, 'gift': serialize_gift(gift)}, status=status.HTTP_200_OK)

    def post(self, request, code, *args, **kwargs):
        body = ClaimRequest.model_validate(request.data)
        result = get_coordinator().claim(
            code, body.secret, body.recipient_address, wait=body.wait)

        transfer = result.transfer
        if transfer is not None and not transfer.is_terminal:
            gift_id = str(result.gift.id)
            transaction.on_commit(lambda: settle_gift.delay(gift_id))

        return Response(
            {
                'success': True,
                'giftId': str(result.gift.id),
                'transferId': str(transfer.id) if transfer else None,
                'status': result.status,
                'transfer': serialize_transfer(transfer) if transfer else None,
            },
            status=status.HTTP_200_OK,
        )


class GiftFundView(GiftAPIView):

    def post(self, request, gift_id, *args, **kwargs):
        gift = get_coordinator().fund(gift_id)
        return Response({'success': True, 'gift': serialize_gift(gift)}, status=status.HTTP_200_OK)


class GiftStatusView(GiftAPIView):

    def get(self, request, gift_id, *args, **kwargs):
        gift = get_coordinator().refresh(gift_id)
        return Response({'success': True, 'gift': serialize_gift(gift)}, status=status.HTTP_200_OK)


class GiftRetryView(GiftAPIView):

    def post(self, request, gift_id, *args, **kwargs):
        gift = get_coordinator().retry_settlement(gift_id)
        return Response({'success': True, 'gift': serialize_gift(gift)}, status=status.HTTP_200_OK)


class InboxView(GiftAPIView):

    def get(self, request, *args, **kwargs):
        coordinator = get_coordinator()
        handle = request.query_params.get('handle', '')
        email = request.query_params.get('email', '')
        sender = request.query_params.get('sender', '')
        if not sender:
            gifts = coordinator.store.for_recipient(handle=handle, email=email)
            return Response(
                {'gifts': [serialize_gift(gift) for gift in gifts]},
                status=status.HTTP_200_OK,
            )

        service = BulkGiftService(coordinator)
        return Response(
            {
                'gifts': [serialize_gift(gift) for gift in coordinator.store.for_sender(sender)],
                'batches': [
                    {
                        'batchCode': batch.batch_code,
                        'companyName': batch.company_name or None,
                        'status': service.batch_status(batch),
                        'createdAt': batch.created_at.isoformat(),
                    }
                    for batch in service.for_sender(sender)
                ],
            },
            status=status.HTTP_200_OK,
        )


class BatchCreateView(GiftAPIView):

    def post(self, request, *args, **kwargs):
        body = BulkCreateRequest.model_validate(request.data)
        coordinator = get_coordinator()
        created = BulkGiftService(coordinator).create_batch(
            recipients=[
                BatchRecipient(
                    first_name=r.first_name,
                    last_name=r.last_name,
                    email=r.email or '',
                    handle=r.telegram_handle or '',
                )
                for r in body.recipients
            ],
            amount=_units(body.amount),
            sender_ref=body.sender_ref or body.sender_wallet_address,
            sender_name=body.sender_name,
            company_name=body.company_name,
            sender_wallet_address=body.sender_wallet_address,
            message=body.message or '',
            expires_at=coordinator.expiry_from_days(body.expires_in_days),
            **_networks(body),
        )
        return Response(
            {
                'success': True,
                'batchCode': created.batch.batch_code,
                'gifts': [_created_body(gift) for gift in created.gifts],
            },
            status=status.HTTP_201_CREATED,
        )


class BatchDetailView(GiftAPIView):

    def get(self, request, batch_code, *args, **kwargs):
        service = BulkGiftService(get_coordinator())
        email = request.query_params.get('email')
        if email:
            gift = service.find_for_email(batch_code, email)
            return Response({'success': True, 'gift': serialize_gift(gift)}, status=status.HTTP_200_OK)

        batch = service.get_batch(batch_code)
        aggregate = service.batch_status(batch)
        gifts = list(batch.gifts.all())
        return Response(
            {
                'success': True,
                'batchCode': batch.batch_code,
                'status': aggregate,
                'companyName': batch.company_name or None,
                'amount': from_base_units(batch.amount, settings.GIFTS_STABLECOIN_DECIMALS),
                'total': len(gifts),
                'completed': sum(1 for g in gifts if g.status == 'completed'),
                'gifts': [
                    {'id': str(g.id), 'recipientName': g.recipient_name or None, 'status': g.status}
                    for g in gifts
                ],
            },
            status=status.HTTP_200_OK,
        )


class ScheduleCreateView(GiftAPIView):

    def post(self, request, *args, **kwargs):
        body = RecurringCreateRequest.model_validate(request.data)
        schedule = RecurringGiftService(get_coordinator()).create_schedule(
            schedule_id=body.schedule_id,
            amount=_units(body.amount),
            interval_seconds=body.interval_seconds,
            sender_ref=body.sender_ref or body.sender_wallet_address,
            sender_wallet_address=body.sender_wallet_address,
            recipient_handle=body.recipient_handle or '',
            recipient_email=body.recipient_email or '',
            message=body.message or '',
            start_at=_aware(body.start_at),
            end_at=_aware(body.end_at),
            max_payments=body.max_payments,
            **_networks(body),
        )
        return Response(
            {
                'success': True,
                'scheduleId': schedule.schedule_id,
                'status': schedule.status,
                'nextRunAt': schedule.next_run_at.isoformat(),
                'remainingPayments': schedule.remaining_payments,
            },
            status=status.HTTP_201_CREATED,
        )


class ScheduleCancelView(GiftAPIView):

    def post(self, request, schedule_id, *args, **kwargs):
        schedule = RecurringGiftService(get_coordinator()).cancel(
            schedule_id, sender_ref=request.data.get('senderRef', ''))
        return Response(
            {'success': True, 'scheduleId': schedule.schedule_id, 'status': schedule.status},
            status=status.HTTP_200_OK,
        )


def _proposal_body(proposal) -> Dict[str, Any]:
    return {
        'id': str(proposal.id),
        'giftId': str(proposal.gift_id),
        'status': proposal.status,
        'requiredSignatures': proposal.required_signatures,
        'signatures': proposal.signature_count,
        'signerAddresses': proposal.signer_addresses,
        'deadline': proposal.deadline.isoformat() if proposal.deadline else None,
    }


class MultiSigCreateView(GiftAPIView):

    def post(self, request, *args, **kwargs):
        body = MultiSigCreateRequest.model_validate(request.data)
        coordinator = get_coordinator()
        created = MultiSigService(coordinator).create_proposal(
            GiftInput(
                amount=_units(body.amount),
                sender_ref=body.sender_ref or body.sender_wallet_address,
                sender_wallet_address=body.sender_wallet_address,
                recipient_handle=body.recipient_handle or '',
                recipient_email=body.recipient_email or '',
                recipient_name=body.recipient_name or '',
                message=body.message or '',
                expires_at=coordinator.expiry_from_days(body.expires_in_days),
                unlock_at=_aware(body.unlock_at),
                with_secret=body.with_secret,
                **_networks(body),
            ),
            initiator_address=body.initiator_address,
            required_signatures=body.required_signatures,
            signer_addresses=body.signer_addresses,
            deadline=_aware(body.deadline),
            initiator_signature=body.initiator_signature,
        )
        response = _created_body(created.created)
        response['proposal'] = _proposal_body(created.proposal)
        return Response(response, status=status.HTTP_201_CREATED)


class MultiSigSignView(GiftAPIView):

    def post(self, request, proposal_id, *args, **kwargs):
        body = SignRequest.model_validate(request.data)
        proposal = MultiSigService(get_coordinator()).sign(
            proposal_id, body.signer_address, body.signature)
        return Response({'success': True, 'proposal': _proposal_body(proposal)}, status=status.HTTP_200_OK)


class MultiSigCancelView(GiftAPIView):

    def post(self, request, proposal_id, *args, **kwargs):
        body = CancelRequest.model_validate(request.data)
        proposal = MultiSigService(get_coordinator()).cancel(proposal_id, body.requester_address)
        return Response({'success': True, 'proposal': _proposal_body(proposal)}, status=status.HTTP_200_OK)
