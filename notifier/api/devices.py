"""Push subscription endpoints for the authenticated user."""

from fastapi import APIRouter, HTTPException, status

from notifier.api.deps import CurrentUserId, DBSession
from notifier.errors import MalformedCredential
from notifier.models.device import (
    DeviceListResponse,
    DeviceResponse,
    DeviceSubscribe,
    DeviceUnsubscribe,
)
from notifier.services import devices

router = APIRouter(prefix="/api/devices", tags=["Devices"])


@router.post("/subscribe", response_model=DeviceResponse, status_code=status.HTTP_201_CREATED)
def subscribe_endpoint(
    session: DBSession,
    user_id: CurrentUserId,
    data: DeviceSubscribe,
) -> DeviceResponse:
    """Register (or re-enable) a push subscription."""
    try:
        device = devices.subscribe(
            session,
            user_id,
            data.subscription,
            platform=data.platform,
            device_name=data.device_name,
        )
    except MalformedCredential as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=e.message,
        )
    return DeviceResponse.model_validate(device)


@router.post("/unsubscribe")
def unsubscribe_endpoint(
    session: DBSession,
    user_id: CurrentUserId,
    data: DeviceUnsubscribe,
) -> dict[str, int]:
    """Remove the subscription for one push endpoint."""
    return {"removed": devices.unsubscribe(session, user_id, data.endpoint)}


@router.delete("")
def unsubscribe_all_endpoint(
    session: DBSession,
    user_id: CurrentUserId,
) -> dict[str, int]:
    """Remove every subscription of the user."""
    return {"removed": devices.unsubscribe_all(session, user_id)}


@router.get("", response_model=DeviceListResponse)
def list_devices_endpoint(
    session: DBSession,
    user_id: CurrentUserId,
) -> DeviceListResponse:
    """List the user's registered devices."""
    user_devices = devices.list_devices(session, user_id)
    return DeviceListResponse(
        devices=[DeviceResponse.model_validate(d) for d in user_devices],
        total=len(user_devices),
    )
