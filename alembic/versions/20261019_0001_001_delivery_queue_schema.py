"""Delivery queue schema - queue rows, device registry and delivery status.

Revision ID: 001
Revises: None
Create Date: 2026-10-19

This migration creates:
- delivery_queue: one row per queued email or push delivery
- user_devices: registered push subscriptions
- notification_delivery_status: latest outcome per notification and channel

Enum labels are the Python member names, which is what SQLAlchemy's Enum
type stores.
"""
from typing import Sequence, Union

from alembic import op

# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Create enums in PostgreSQL
    op.execute("CREATE TYPE deliverychannel AS ENUM ('EMAIL', 'PUSH')")
    op.execute("CREATE TYPE deliverystatus AS ENUM ('PENDING', 'PROCESSING', 'SENT', 'FAILED')")
    op.execute("CREATE TYPE deviceplatform AS ENUM ('WEB', 'IOS', 'ANDROID')")

    # Create delivery_queue table
    op.execute("""
        CREATE TABLE IF NOT EXISTS delivery_queue (
            id UUID PRIMARY KEY,
            notification_id UUID,
            channel deliverychannel NOT NULL,
            target VARCHAR NOT NULL,
            device_id UUID,
            payload JSONB NOT NULL DEFAULT '{}'::jsonb,
            status deliverystatus NOT NULL DEFAULT 'PENDING',
            priority INTEGER NOT NULL DEFAULT 2,
            scheduled_for TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
            retry_count INTEGER NOT NULL DEFAULT 0,
            error_message VARCHAR,
            error_code VARCHAR(50),
            provider_message_id VARCHAR(255),
            created_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
            sent_at TIMESTAMP
        );
        CREATE INDEX IF NOT EXISTS ix_delivery_queue_notification_id ON delivery_queue(notification_id);
        CREATE INDEX IF NOT EXISTS ix_delivery_queue_device_id ON delivery_queue(device_id);
        CREATE INDEX IF NOT EXISTS ix_delivery_queue_status ON delivery_queue(status);
        CREATE INDEX IF NOT EXISTS ix_delivery_queue_dispatch
            ON delivery_queue(channel, status, priority, scheduled_for);
    """)

    # Create user_devices table
    op.execute("""
        CREATE TABLE IF NOT EXISTS user_devices (
            id UUID PRIMARY KEY,
            user_id UUID NOT NULL,
            platform deviceplatform NOT NULL DEFAULT 'WEB',
            credential VARCHAR NOT NULL,
            device_name VARCHAR(255),
            enabled BOOLEAN NOT NULL DEFAULT TRUE,
            last_used_at TIMESTAMP,
            created_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
            UNIQUE (user_id, credential)
        );
        CREATE INDEX IF NOT EXISTS ix_user_devices_user_id ON user_devices(user_id);
    """)

    # Create notification_delivery_status table
    op.execute("""
        CREATE TABLE IF NOT EXISTS notification_delivery_status (
            notification_id UUID NOT NULL,
            channel deliverychannel NOT NULL,
            status deliverystatus NOT NULL,
            sent_at TIMESTAMP,
            failed_at TIMESTAMP,
            error_message VARCHAR,
            updated_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
            PRIMARY KEY (notification_id, channel)
        );
    """)


def downgrade() -> None:
    # Drop tables in reverse order
    op.execute("DROP TABLE IF EXISTS notification_delivery_status CASCADE")
    op.execute("DROP TABLE IF EXISTS user_devices CASCADE")
    op.execute("DROP TABLE IF EXISTS delivery_queue CASCADE")

    # Drop enums
    op.execute("DROP TYPE IF EXISTS deviceplatform")
    op.execute("DROP TYPE IF EXISTS deliverystatus")
    op.execute("DROP TYPE IF EXISTS deliverychannel")
