"""Public push configuration for subscribing clients."""

from typing import Any

from fastapi import APIRouter

from notifier.config import get_settings

router = APIRouter(prefix="/api/push", tags=["Push"])


@router.get("/vapid-key")
def get_vapid_key() -> dict[str, Any]:
    """VAPID application server key the browser subscribes with.

    Unauthenticated. ``publicKey`` is null until VAPID_PUBLIC_KEY is set.
    """
    public_key = get_settings().VAPID_PUBLIC_KEY
    return {"publicKey": public_key or None, "configured": bool(public_key)}
