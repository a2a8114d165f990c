"""create sla engine tables: inquiries, sla_policies, sla_violations, escalations, notification_rules, notification_logs, audit_logs

Revision ID: 3b7e1c9a0f21
Revises:
Create Date: 2026-10-05 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, UUID


# revision identifiers, used by Alembic.
revision: str = '3b7e1c9a0f21'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
    ]


def upgrade() -> None:
    # ─── inquiries (read model, owned by the ticket store) ───
    op.create_table(
        'inquiries',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('app_id', UUID(as_uuid=True), nullable=False),
        sa.Column('title', sa.String(500), nullable=False),
        sa.Column('priority', sa.String(20), nullable=False, server_default='medium'),
        sa.Column('status', sa.String(20), nullable=False, server_default='new'),
        sa.Column('assigned_to', UUID(as_uuid=True), nullable=True),
        sa.Column('first_response_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('resolved_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_inquiries_app_id', 'inquiries', ['app_id'])
    op.create_index('ix_inquiries_status', 'inquiries', ['status'])
    op.create_index('ix_inquiries_assigned_to', 'inquiries', ['assigned_to'])

    # ─── sla_policies ───
    op.create_table(
        'sla_policies',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('app_id', UUID(as_uuid=True), nullable=False),
        sa.Column('priority', sa.String(20), nullable=False),
        sa.Column('response_target_hours', sa.Float, nullable=False),
        sa.Column('resolution_target_hours', sa.Float, nullable=False),
        sa.Column('escalation_target_hours', sa.Float, nullable=False),
        sa.Column('is_active', sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column('created_by', UUID(as_uuid=True), nullable=True),
        *_timestamps(),
        sa.CheckConstraint(
            'response_target_hours > 0 AND resolution_target_hours > 0 AND escalation_target_hours > 0',
            name='ck_sla_policies_positive_targets',
        ),
    )
    op.create_index('ix_sla_policies_app_id', 'sla_policies', ['app_id'])
    op.create_index(
        'uq_sla_policies_active_app_priority',
        'sla_policies',
        ['app_id', 'priority'],
        unique=True,
        postgresql_where=sa.text('is_active'),
    )

    # ─── escalations (append-only) ───
    op.create_table(
        'escalations',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('inquiry_id', UUID(as_uuid=True), sa.ForeignKey('inquiries.id'), nullable=False),
        sa.Column('from_assignee', UUID(as_uuid=True), nullable=True),
        sa.Column('to_assignee', UUID(as_uuid=True), nullable=False),
        sa.Column('reason', sa.String(30), nullable=False),
        sa.Column('level', sa.Integer, nullable=False),
        sa.Column('automatic', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('escalated_by', UUID(as_uuid=True), nullable=True),
        sa.Column('comment', sa.Text, nullable=True),
        sa.Column('escalated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        *_timestamps(),
        sa.UniqueConstraint('inquiry_id', 'level', name='uq_escalations_inquiry_level'),
        sa.CheckConstraint('level >= 1', name='ck_escalations_level_positive'),
    )
    op.create_index('ix_escalations_inquiry_id', 'escalations', ['inquiry_id'])
    op.create_index('ix_escalations_to_assignee', 'escalations', ['to_assignee'])

    # ─── sla_violations ───
    op.create_table(
        'sla_violations',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('inquiry_id', UUID(as_uuid=True), sa.ForeignKey('inquiries.id'), nullable=False),
        sa.Column('policy_id', UUID(as_uuid=True), sa.ForeignKey('sla_policies.id'), nullable=False),
        sa.Column('kind', sa.String(30), nullable=False),
        sa.Column('expected_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('actual_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('delay_hours', sa.Float, nullable=False, server_default='0'),
        sa.Column('severity', sa.String(20), nullable=False),
        sa.Column('detected_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.Column('resolved', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('resolved_by', UUID(as_uuid=True), nullable=True),
        sa.Column('resolved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('resolution_comment', sa.Text, nullable=True),
        sa.Column('escalation_id', UUID(as_uuid=True), sa.ForeignKey('escalations.id'), nullable=True),
        *_timestamps(),
        sa.CheckConstraint('delay_hours >= 0', name='ck_sla_violations_delay_non_negative'),
    )
    op.create_index('ix_sla_violations_inquiry_id', 'sla_violations', ['inquiry_id'])
    op.create_index('ix_sla_violations_policy_id', 'sla_violations', ['policy_id'])
    op.create_index(
        'uq_sla_violations_open_inquiry_kind',
        'sla_violations',
        ['inquiry_id', 'kind'],
        unique=True,
        postgresql_where=sa.text('NOT resolved'),
    )

    # ─── notification_rules ───
    op.create_table(
        'notification_rules',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('trigger', sa.String(50), nullable=False),
        sa.Column('conditions', JSONB, nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column('actions', JSONB, nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column('is_active', sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column('created_by', UUID(as_uuid=True), nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_notification_rules_trigger', 'notification_rules', ['trigger'])

    # ─── notification_logs (no FK to rules: logs outlive deleted rules) ───
    op.create_table(
        'notification_logs',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('rule_id', UUID(as_uuid=True), nullable=True),
        sa.Column('channel', sa.String(50), nullable=False),
        sa.Column('recipient', sa.String(500), nullable=False),
        sa.Column('subject', sa.String(500), nullable=False),
        sa.Column('content', sa.Text, nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('error_message', sa.Text, nullable=True),
        sa.Column('scheduled_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('attempted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('sent_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('delivered_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('triggered_by', UUID(as_uuid=True), nullable=True),
        sa.Column('metadata', JSONB, nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_notification_logs_rule_id', 'notification_logs', ['rule_id'])
    op.create_index('ix_notification_logs_status', 'notification_logs', ['status'])
    op.create_index('ix_notification_logs_scheduled_at', 'notification_logs', ['scheduled_at'])
    op.create_index(
        'ix_notification_logs_due',
        'notification_logs',
        ['scheduled_at'],
        postgresql_where=sa.text("status = 'pending' AND attempted_at IS NULL"),
    )

    # ─── audit_logs ───
    op.create_table(
        'audit_logs',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('actor_id', UUID(as_uuid=True), nullable=True),
        sa.Column('action', sa.String(100), nullable=False),
        sa.Column('entity_type', sa.String(100), nullable=False),
        sa.Column('entity_id', UUID(as_uuid=True), nullable=True),
        sa.Column('before_state', sa.Text, nullable=True),
        sa.Column('after_state', sa.Text, nullable=True),
        sa.Column('notes', sa.Text, nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_audit_logs_action', 'audit_logs', ['action'])
    op.create_index('ix_audit_logs_entity_type', 'audit_logs', ['entity_type'])
    op.create_index('ix_audit_logs_entity_id', 'audit_logs', ['entity_id'])


def downgrade() -> None:
    op.drop_table('audit_logs')
    op.drop_index('ix_notification_logs_due', table_name='notification_logs')
    op.drop_table('notification_logs')
    op.drop_table('notification_rules')
    op.drop_index('uq_sla_violations_open_inquiry_kind', table_name='sla_violations')
    op.drop_table('sla_violations')
    op.drop_table('escalations')
    op.drop_index('uq_sla_policies_active_app_priority', table_name='sla_policies')
    op.drop_table('sla_policies')
    op.drop_table('inquiries')
