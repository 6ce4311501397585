"""
Alembic migration: initial Waterline schema.

Creates the orders, users and settings tables with the order invariants as
CHECK constraints and one index per compound query the services issue,
including the partial index behind the unassigned-confirmed queue.

Revision ID: 001
Revises:
Create Date: 2026-01-12 09:14:03.551208
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# Revision identifiers, used by Alembic
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            'created_at',
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text('now()'),
        ),
        sa.Column(
            'updated_at',
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text('now()'),
        ),
    ]


def upgrade() -> None:
    """Create tables, constraints and query indexes."""
    op.create_table(
        'orders',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('customer_uid', sa.String(128), nullable=False),
        sa.Column('customer_name', sa.String(120), nullable=False),
        sa.Column('customer_phone', sa.String(40), nullable=False),
        sa.Column('address', sa.String(500), nullable=False),
        sa.Column('landmark', sa.String(255), nullable=False, server_default=''),
        sa.Column('water_type', sa.String(7), nullable=False),
        sa.Column('liters', sa.Numeric(10, 2), nullable=False),
        sa.Column('payment_method', sa.String(4), nullable=False),
        sa.Column('schedule_type', sa.String(5), nullable=False),
        sa.Column('scheduled_for', sa.DateTime(timezone=True), nullable=True),
        sa.Column('status', sa.String(16), nullable=False),
        sa.Column('assigned_driver_uid', sa.String(128), nullable=True),
        sa.Column('assigned_driver_name', sa.String(120), nullable=True),
        *_timestamps(),
        sa.CheckConstraint('liters > 0', name='ck_orders_liters_positive'),
        sa.CheckConstraint(
            "schedule_type <> 'later' OR scheduled_for IS NOT NULL",
            name='ck_orders_scheduled_for_required',
        ),
        sa.CheckConstraint(
            '(assigned_driver_uid IS NULL) = (assigned_driver_name IS NULL)',
            name='ck_orders_driver_pair',
        ),
        sa.CheckConstraint(
            "status IN ('PENDING', 'CONFIRMED', 'OUT_FOR_DELIVERY', "
            "'DELIVERED', 'CANCELLED')",
            name='ck_orders_status_valid',
        ),
        comment='Water delivery orders',
    )

    op.create_index(
        'ix_orders_status_created_at',
        'orders',
        ['status', sa.text('created_at DESC')],
    )
    op.create_index(
        'ix_orders_created_at',
        'orders',
        [sa.text('created_at DESC')],
    )
    op.create_index(
        'ix_orders_customer_uid_created_at',
        'orders',
        ['customer_uid', sa.text('created_at DESC')],
    )
    op.create_index(
        'ix_orders_driver_status_created_at',
        'orders',
        ['assigned_driver_uid', 'status', sa.text('created_at DESC')],
    )
    op.create_index(
        'ix_orders_unassigned_confirmed',
        'orders',
        [sa.text('created_at DESC')],
        postgresql_where=sa.text(
            "assigned_driver_uid IS NULL AND status = 'CONFIRMED'"
        ),
    )

    op.create_table(
        'users',
        sa.Column('id', sa.String(128), primary_key=True, comment='Identity provider uid'),
        sa.Column('role', sa.String(20), nullable=False, comment='OWNER or DRIVER'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('name', sa.String(120), nullable=False, server_default=''),
        *_timestamps(),
        comment='Staff role profiles',
    )
    op.create_index('ix_users_role_is_active', 'users', ['role', 'is_active'])

    op.create_table(
        'settings',
        sa.Column('id', sa.String(32), primary_key=True),
        sa.Column('tank_capacity_liters', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('price_per_1000_liters', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('delivery_fee', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('daily_delivery_goal_orders', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('business_name', sa.String(120), nullable=False, server_default=''),
        sa.Column('business_phone', sa.String(40), nullable=False, server_default=''),
        sa.Column('business_email', sa.String(255), nullable=False, server_default=''),
        sa.Column('business_address', sa.String(500), nullable=False, server_default=''),
        sa.Column('business_whatsapp', sa.String(40), nullable=False, server_default=''),
        sa.Column('business_hours', sa.String(255), nullable=False, server_default=''),
        sa.Column('business_note', sa.Text(), nullable=False, server_default=''),
        *_timestamps(),
    )


def downgrade() -> None:
    """Drop the Waterline schema."""
    op.drop_table('settings')
    op.drop_index('ix_users_role_is_active', table_name='users')
    op.drop_table('users')
    op.drop_index('ix_orders_unassigned_confirmed', table_name='orders')
    op.drop_index('ix_orders_driver_status_created_at', table_name='orders')
    op.drop_index('ix_orders_customer_uid_created_at', table_name='orders')
    op.drop_index('ix_orders_created_at', table_name='orders')
    op.drop_index('ix_orders_status_created_at', table_name='orders')
    op.drop_table('orders')
