"""create store_node table for the session tree

Revision ID: 5c2a9e71b0d4
Revises:
Create Date: 2026-10-19 10:12:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '5c2a9e71b0d4'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    insp = sa.inspect(bind)

    # db-reset may already have created the table through create_all
    if 'store_node' in set(insp.get_table_names()):
        return

    op.create_table(
        'store_node',
        sa.Column('path', sa.String(length=255), nullable=False),
        sa.Column('value', sa.Text(), nullable=False),
        sa.Column('updated_at', sa.Float(), nullable=False),
        sa.PrimaryKeyConstraint('path'),
    )


def downgrade():
    bind = op.get_bind()
    insp = sa.inspect(bind)
    if 'store_node' in set(insp.get_table_names()):
        op.drop_table('store_node')
