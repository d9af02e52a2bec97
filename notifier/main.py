"""FastAPI application entry point."""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlmodel import SQLModel

from notifier.api.devices import router as devices_router
from notifier.api.notifications import router as notifications_router
from notifier.api.push import router as push_router
from notifier.api.queue import router as queue_router
from notifier.config import get_settings
from notifier.db.session import engine

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create database tables on startup."""
    # Import models to register them with SQLModel
    from notifier.models import (  # noqa: F401
        DeliveryRecord,
        DeviceEndpoint,
        NotificationDeliveryStatus,
    )
    SQLModel.metadata.create_all(engine)
    yield

app = FastAPI(
    title="Notification Delivery API",
    description="Email and web push delivery queue with trigger endpoints",
    version="1.0.0",
    lifespan=lifespan,
)

cors_origins = [
    settings.FRONTEND_URL,
    settings.APP_URL,
    "http://localhost:3000",
]
# Remove duplicates and empty strings
cors_origins = [origin for origin in set(cors_origins) if origin]

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Register routers
app.include_router(queue_router)
app.include_router(devices_router)
app.include_router(notifications_router)
app.include_router(push_router)


@app.get("/health")
def health_check() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "healthy"}
