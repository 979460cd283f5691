"""append_only_history_tables

Revision ID: 8e4d2f6b9a10
Revises: 5b1e0c3a7d21
Create Date: 2026-10-19 09:05:00.000000

Enforce append-only semantics on audit_logs and approval_actions:
- Revoke UPDATE and DELETE from PUBLIC
- Grant SELECT and INSERT only
"""
from typing import Sequence, Union

from alembic import op


# revision identifiers, used by Alembic.
revision: str = '8e4d2f6b9a10'
down_revision: Union[str, None] = '5b1e0c3a7d21'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

TABLES = ("audit_logs", "approval_actions")


def upgrade() -> None:
    for table in TABLES:
        op.execute(f"REVOKE UPDATE, DELETE ON {table} FROM PUBLIC;")
        op.execute(f"GRANT SELECT, INSERT ON {table} TO PUBLIC;")


def downgrade() -> None:
    # Disaster recovery only
    for table in TABLES:
        op.execute(f"GRANT UPDATE, DELETE ON {table} TO PUBLIC;")
