"""add notify_lunch to users

Revision ID: 202601120900
Revises: 202601050900
Create Date: 2026-01-12 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202601120900"
down_revision = "202601050900"
branch_labels = None
depends_on = None


def upgrade() -> None:
    with op.batch_alter_table("users") as batch_op:
        batch_op.add_column(
            sa.Column(
                "notify_lunch",
                sa.Boolean(),
                nullable=False,
                server_default=sa.true(),
            )
        )


def downgrade() -> None:
    with op.batch_alter_table("users") as batch_op:
        batch_op.drop_column("notify_lunch")
