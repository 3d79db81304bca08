"""create integrations and orders tables

Revision ID: a7c1e9d04b21
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, UUID

# revision identifiers, used by Alembic.
revision: str = 'a7c1e9d04b21'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'integrations',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column('user_id', sa.String(255), nullable=False),
        sa.Column('platform', sa.String(20), nullable=False),
        sa.Column('store_url', sa.String(500), nullable=False),
        sa.Column('access_token', sa.Text(), nullable=False),
        sa.Column('refresh_token', sa.Text(), nullable=True),
        sa.Column('scope', sa.String(255), nullable=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='active'),
        sa.Column('last_sync_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_integrations_user_id', 'integrations', ['user_id'])
    op.create_index('ix_integrations_status', 'integrations', ['status'])
    op.create_index('ix_integrations_owner_store', 'integrations', ['user_id', 'platform', 'store_url'])

    op.create_table(
        'orders',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column('integration_id', UUID(as_uuid=True), sa.ForeignKey('integrations.id'), nullable=False),
        sa.Column('external_id', sa.String(100), nullable=False),
        sa.Column('total_price', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('currency', sa.String(3), nullable=True),
        sa.Column('customer_name', sa.String(255), nullable=False, server_default='Guest'),
        sa.Column('status', sa.String(50), nullable=True),
        sa.Column('ordered_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('raw_data', JSONB(), nullable=True),
        sa.Column('synced_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    # Merge key for the order upsert (ON CONFLICT target).
    op.create_index(
        'ux_orders_integration_external', 'orders', ['integration_id', 'external_id'], unique=True,
    )
    op.create_index('ix_orders_integration_ordered', 'orders', ['integration_id', 'ordered_at'])


def downgrade() -> None:
    op.drop_index('ix_orders_integration_ordered', table_name='orders')
    op.drop_index('ux_orders_integration_external', table_name='orders')
    op.drop_table('orders')
    op.drop_index('ix_integrations_owner_store', table_name='integrations')
    op.drop_index('ix_integrations_status', table_name='integrations')
    op.drop_index('ix_integrations_user_id', table_name='integrations')
    op.drop_table('integrations')
