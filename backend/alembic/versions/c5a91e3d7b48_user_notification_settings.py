"""user_notification_settings

Revision ID: c5a91e3d7b48
Revises: 8d4f2a6b1c37
Create Date: 2026-10-19 10:00:00.000000

Per-user opt-out and destination override for each (trigger, channel) pair.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID


# revision identifiers, used by Alembic.
revision: str = 'c5a91e3d7b48'
down_revision: Union[str, None] = '8d4f2a6b1c37'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'user_notification_settings',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('user_id', UUID(as_uuid=True), nullable=False),
        sa.Column('trigger', sa.String(50), nullable=False),
        sa.Column('channel', sa.String(50), nullable=False),
        sa.Column('is_enabled', sa.Boolean, nullable=False, server_default=sa.text('true')),
        sa.Column('destination', sa.String(500), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.UniqueConstraint(
            'user_id', 'trigger', 'channel', name='uq_user_notification_settings_user_trigger_channel',
        ),
    )
    op.create_index('ix_user_notification_settings_user_id', 'user_notification_settings', ['user_id'])


def downgrade() -> None:
    op.drop_index('ix_user_notification_settings_user_id', table_name='user_notification_settings')
    op.drop_table('user_notification_settings')
