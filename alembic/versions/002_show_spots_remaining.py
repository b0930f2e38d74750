"""events.show_spots_remaining

Revision ID: 002_show_spots_remaining
Revises: 001_initial
Create Date: 2026-10-18 15:30:00.000000

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '002_show_spots_remaining'
down_revision = '001_initial'
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.add_column(
        'events',
        sa.Column(
            'show_spots_remaining', sa.Boolean(), nullable=False, server_default=sa.true()
        ),
    )


def downgrade() -> None:
    op.drop_column('events', 'show_spots_remaining')
