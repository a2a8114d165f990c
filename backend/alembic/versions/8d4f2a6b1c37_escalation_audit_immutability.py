"""escalation_audit_immutability

Revision ID: 8d4f2a6b1c37
Revises: 3b7e1c9a0f21
Create Date: 2026-10-05 09:30:00.000000

Enforce append-only semantics on escalations and audit_logs at the DB level:
- Revoke UPDATE and DELETE from PUBLIC
- Grant SELECT and INSERT only
"""
from typing import Sequence, Union

from alembic import op


# revision identifiers, used by Alembic.
revision: str = '8d4f2a6b1c37'
down_revision: Union[str, None] = '3b7e1c9a0f21'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

_APPEND_ONLY_TABLES = ("escalations", "audit_logs")


def upgrade() -> None:
    for table in _APPEND_ONLY_TABLES:
        op.execute(f"REVOKE UPDATE, DELETE ON {table} FROM PUBLIC;")
        op.execute(f"GRANT SELECT, INSERT ON {table} TO PUBLIC;")


def downgrade() -> None:
    # Restore full DML access (only for disaster-recovery; normally never run)
    for table in _APPEND_ONLY_TABLES:
        op.execute(f"GRANT UPDATE, DELETE ON {table} TO PUBLIC;")
