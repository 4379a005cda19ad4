# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Guardian notification API endpoints.

This module provides endpoints for guardian messaging:
- POST /admit - Decide per guardian whether a message may be sent
- POST /send - Admit and deliver a message
- POST /overrides - Force a held message through for one guardian
- GET /deliveries/{delivery_id} - Get delivery status
- POST /deliveries/{delivery_id}/cancel - Cancel a delivery
- POST /deliveries/{delivery_id}/resend - Re-send an exhausted delivery
- POST /deliveries/{delivery_id}/confirm - Record a delivery receipt
- POST /network/offline - Park deliveries while disconnected
- POST /network/online - Replay parked deliveries
- POST /consents/offline - Capture consent on the device
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, status

from guardian_notify.api.dependencies import get_notification_service
from guardian_notify.domains.consent.exceptions import (
    ConsentOverrideError,
    InvalidConsentSourceError,
    OverrideNotPermittedError,
    WithdrawnConsentOverrideError,
)
from guardian_notify.domains.consent.overrides import OverrideRequest
from guardian_notify.domains.delivery.exceptions import (
    DeliveryAlreadyTerminalError,
    DeliveryNotFoundError,
    InvalidTransitionError,
)
from guardian_notify.domains.messaging.models import NotificationMessage
from guardian_notify.models.notifications import (
    AdmitResponse,
    ConsentRecordResponse,
    DecisionResponse,
    DeliveryStateResponse,
    DeliveryStatusResponse,
    MessageRequest,
    NetworkResponse,
    OfflineConsentRequest,
    OverrideRequestBody,
    OverrideResponse,
    SubmitResponse,
)
from guardian_notify.services.notification_service import (
    GuardianNotFoundError,
    NotificationService,
    OfflineConsentUnavailableError,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def _to_message(data: MessageRequest) -> NotificationMessage:
    try:
        return data.to_message()
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(e),
        )


def _delivery_not_found(delivery_id: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail=f"Delivery not found: {delivery_id}",
    )


@router.post(
    "/admit",
    response_model=AdmitResponse,
    summary="Admit a message",
    description="Decide for each guardian whether the message may be sent and on which channel.",
)
async def admit_message(
    data: MessageRequest,
    service: NotificationService = Depends(get_notification_service),
) -> AdmitResponse:
    message = _to_message(data)
    decisions = await service.admit(message, data.guardian_ids)
    return AdmitResponse(
        message_id=message.id,
        decisions=[DecisionResponse.from_decision(d) for d in decisions],
    )


@router.post(
    "/send",
    response_model=SubmitResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Send a message",
    description="Admit a message and start delivery to every admitted guardian.",
)
async def send_message(
    data: MessageRequest,
    service: NotificationService = Depends(get_notification_service),
) -> SubmitResponse:
    """Admit and deliver a message.

    Returns 202: delivery continues in the background.
    """
    message = _to_message(data)
    decisions = await service.admit(message, data.guardian_ids)
    result = await service.submit(message, decisions)
    logger.info(
        "Send requested for message %s: %d deliveries",
        message.id,
        len(result.delivery_ids),
    )
    return SubmitResponse(**result.to_dict())


@router.post(
    "/overrides",
    response_model=OverrideResponse,
    summary="Override held consent",
    description="Force a held message through for one guardian. Withdrawn consent cannot be overridden.",
)
async def override_consent(
    data: OverrideRequestBody,
    service: NotificationService = Depends(get_notification_service),
) -> OverrideResponse:
    """Apply a staff override and deliver the message when admitted.

    Raises:
        HTTPException: 403 when the role may not override, 404 when the
            guardian is unknown, 409 when consent was withdrawn.
    """
    message = _to_message(data.message)
    try:
        request = OverrideRequest(
            message_id=message.id,
            guardian_id=data.guardian_id,
            student_id=message.student_id,
            category=message.category,
            reason=data.reason,
            notes=data.notes,
            overridden_by=data.overridden_by,
            overridden_by_role=data.overridden_by_role,
            witness_name=data.witness_name,
        )
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(e),
        )

    try:
        decision, entry = await service.override(message, request)
    except GuardianNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except OverrideNotPermittedError as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))
    except WithdrawnConsentOverrideError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except ConsentOverrideError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))

    delivery_id = None
    if decision.allowed:
        result = await service.submit(message, [decision])
        delivery_id = result.delivery_ids.get(data.guardian_id)

    return OverrideResponse(
        decision=DecisionResponse.from_decision(decision),
        override_id=entry.id if entry else None,
        audit_id=entry.audit_id if entry else None,
        delivery_id=delivery_id,
    )


@router.get(
    "/deliveries/{delivery_id}",
    response_model=DeliveryStatusResponse,
    summary="Get delivery status",
)
async def get_delivery(
    delivery_id: str,
    service: NotificationService = Depends(get_notification_service),
) -> DeliveryStatusResponse:
    try:
        snapshot = service.status(delivery_id)
    except DeliveryNotFoundError:
        raise _delivery_not_found(delivery_id)
    return DeliveryStatusResponse(**snapshot.to_dict())


@router.post(
    "/deliveries/{delivery_id}/cancel",
    response_model=DeliveryStateResponse,
    summary="Cancel a delivery",
)
async def cancel_delivery(
    delivery_id: str,
    service: NotificationService = Depends(get_notification_service),
) -> DeliveryStateResponse:
    try:
        state = await service.cancel(delivery_id)
    except DeliveryNotFoundError:
        raise _delivery_not_found(delivery_id)
    except DeliveryAlreadyTerminalError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    return DeliveryStateResponse(delivery_id=delivery_id, state=state.value)


@router.post(
    "/deliveries/{delivery_id}/resend",
    response_model=DeliveryStateResponse,
    summary="Re-send an exhausted delivery",
)
async def resend_delivery(
    delivery_id: str,
    service: NotificationService = Depends(get_notification_service),
) -> DeliveryStateResponse:
    try:
        state = await service.resend(delivery_id)
    except DeliveryNotFoundError:
        raise _delivery_not_found(delivery_id)
    except InvalidTransitionError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    return DeliveryStateResponse(delivery_id=delivery_id, state=state.value)


@router.post(
    "/deliveries/{delivery_id}/confirm",
    response_model=DeliveryStateResponse,
    summary="Confirm delivery",
    description="Record the provider's delivery receipt for a sent message.",
)
async def confirm_delivery(
    delivery_id: str,
    service: NotificationService = Depends(get_notification_service),
) -> DeliveryStateResponse:
    try:
        state = await service.confirm_delivery(delivery_id)
    except DeliveryNotFoundError:
        raise _delivery_not_found(delivery_id)
    except InvalidTransitionError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    return DeliveryStateResponse(delivery_id=delivery_id, state=state.value)


@router.post("/network/offline", response_model=NetworkResponse, summary="Go offline")
async def network_offline(
    service: NotificationService = Depends(get_notification_service),
) -> NetworkResponse:
    parked = await service.network_offline()
    return NetworkResponse(online=False, affected=parked)


@router.post("/network/online", response_model=NetworkResponse, summary="Go online")
async def network_online(
    service: NotificationService = Depends(get_notification_service),
) -> NetworkResponse:
    replayed = await service.network_online()
    return NetworkResponse(online=True, affected=replayed)


@router.post(
    "/consents/offline",
    response_model=ConsentRecordResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Capture consent offline",
)
async def record_offline_consent(
    data: OfflineConsentRequest,
    service: NotificationService = Depends(get_notification_service),
) -> ConsentRecordResponse:
    try:
        record = await service.record_offline_consent(
            data.guardian_id,
            data.student_id,
            data.category,
            data.status,
            data.source,
            data.recorded_by,
            data.recorded_by_role,
            witness_name=data.witness_name,
            paper_form_ref=data.paper_form_ref,
            notes=data.notes,
        )
    except InvalidConsentSourceError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
    except OfflineConsentUnavailableError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))

    return ConsentRecordResponse(
        id=record.id,
        guardian_id=record.guardian_id,
        student_id=record.student_id,
        category=record.category.value,
        status=record.status.value,
        source=record.source.value,
        expires_at=record.expires_at,
        created_at=record.created_at,
        synced_at=record.synced_at,
    )
