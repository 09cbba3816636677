"""Initial schema: orders, order validations, credit pools, credit usage, admin users, audit

Revision ID: 3f6a1c2b9e47
Revises: 
Create Date: 2026-10-18 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '3f6a1c2b9e47'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create all tables for the credit ledger."""
    op.execute('CREATE EXTENSION IF NOT EXISTS "uuid-ossp"')

    # Create enums
    op.execute("CREATE TYPE orderstatus AS ENUM ('pending_validation', 'validated', 'authorized', 'cancelled', 'expired')")
    op.execute("CREATE TYPE paymentmethod AS ENUM ('caisse_oic', 'stripe', 'lygos')")
    op.execute("CREATE TYPE validationtype AS ENUM ('validation', 'authorization', 'cancellation', 'expiration')")
    op.execute("CREATE TYPE adminrole AS ENUM ('admin', 'cashier')")

    # 1. Orders table (no dependencies)
    op.create_table(
        'orders',
        sa.Column('id', sa.UUID(), server_default=sa.text('uuid_generate_v4()'), nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.Column('order_number', sa.String(length=32), nullable=False),
        sa.Column('user_id', sa.String(), nullable=False),
        sa.Column('user_email', sa.String(), nullable=True),
        sa.Column('user_name', sa.String(), nullable=True),
        sa.Column('plan_id', sa.String(), nullable=False),
        sa.Column('plan_name', sa.String(), nullable=True),
        sa.Column('plan_credits', sa.Integer(), nullable=False),
        sa.Column('amount', sa.Integer(), nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=False, server_default='XOF'),
        sa.Column('payment_method', postgresql.ENUM(name='paymentmethod', create_type=False), nullable=False),
        sa.Column('status', postgresql.ENUM(name='orderstatus', create_type=False), nullable=False, server_default='pending_validation'),
        sa.Column('validated_at', sa.DateTime(), nullable=True),
        sa.Column('validated_by', sa.String(), nullable=True),
        sa.Column('authorized_at', sa.DateTime(), nullable=True),
        sa.Column('authorized_by', sa.String(), nullable=True),
        sa.Column('receipt_number', sa.String(length=32), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.CheckConstraint('plan_credits > 0', name='ck_orders_plan_credits_positive'),
        sa.CheckConstraint('amount >= 0', name='ck_orders_amount_non_negative'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('order_number'),
    )
    op.create_index(op.f('ix_orders_order_number'), 'orders', ['order_number'])
    op.create_index(op.f('ix_orders_user_id'), 'orders', ['user_id'])
    op.create_index(op.f('ix_orders_status'), 'orders', ['status'])
    op.create_index(op.f('ix_orders_created_at'), 'orders', ['created_at'])
    op.create_index(op.f('ix_orders_validated_by'), 'orders', ['validated_by'])
    op.create_index(op.f('ix_orders_authorized_by'), 'orders', ['authorized_by'])

    # 2. Order validations (approval trail, depends on orders)
    op.create_table(
        'order_validations',
        sa.Column('id', sa.UUID(), server_default=sa.text('uuid_generate_v4()'), nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.Column('order_id', sa.UUID(), nullable=False),
        sa.Column('validator_id', sa.String(), nullable=False),
        sa.Column('validator_name', sa.String(), nullable=True),
        sa.Column('type', postgresql.ENUM(name='validationtype', create_type=False), nullable=False),
        sa.Column('from_status', sa.String(), nullable=False),
        sa.Column('to_status', sa.String(), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_order_validations_order_id'), 'order_validations', ['order_id'])

    # 3. Credit pools (one per authorized order)
    op.create_table(
        'credit_pools',
        sa.Column('id', sa.UUID(), server_default=sa.text('uuid_generate_v4()'), nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.Column('user_id', sa.String(), nullable=False),
        sa.Column('order_id', sa.UUID(), nullable=False),
        sa.Column('order_number', sa.String(length=32), nullable=False),
        sa.Column('plan_id', sa.String(), nullable=False),
        sa.Column('plan_name', sa.String(), nullable=True),
        sa.Column('total_credits', sa.Integer(), nullable=False),
        sa.Column('remaining_credits', sa.Integer(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('expires_at', sa.DateTime(), nullable=True),
        sa.Column('deactivated_at', sa.DateTime(), nullable=True),
        sa.CheckConstraint('total_credits > 0', name='ck_credit_pools_total_positive'),
        sa.CheckConstraint(
            'remaining_credits >= 0 AND remaining_credits <= total_credits',
            name='ck_credit_pools_remaining_bounds',
        ),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('order_id'),
    )
    op.create_index(op.f('ix_credit_pools_user_id'), 'credit_pools', ['user_id'])
    op.create_index(op.f('ix_credit_pools_created_at'), 'credit_pools', ['created_at'])
    # FIFO selection: oldest eligible pool per user
    op.create_index('ix_credit_pools_user_fifo', 'credit_pools', ['user_id', 'created_at', 'id'])

    # 4. Credit usage receipts (depends on credit_pools)
    op.create_table(
        'credit_usage',
        sa.Column('id', sa.UUID(), server_default=sa.text('uuid_generate_v4()'), nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.Column('user_id', sa.String(), nullable=False),
        sa.Column('credit_pool_id', sa.UUID(), nullable=False),
        sa.Column('order_id', sa.UUID(), nullable=False),
        sa.Column('order_number', sa.String(length=32), nullable=False),
        sa.Column('subject_id', sa.String(), nullable=False),
        sa.Column('label', sa.String(), nullable=True),
        sa.Column('idempotency_key', sa.String(), nullable=True),
        sa.ForeignKeyConstraint(['credit_pool_id'], ['credit_pools.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id', 'idempotency_key', name='uq_credit_usage_user_idempotency_key'),
    )
    op.create_index(op.f('ix_credit_usage_user_id'), 'credit_usage', ['user_id'])
    op.create_index(op.f('ix_credit_usage_credit_pool_id'), 'credit_usage', ['credit_pool_id'])
    op.create_index(op.f('ix_credit_usage_subject_id'), 'credit_usage', ['subject_id'])
    op.create_index(op.f('ix_credit_usage_created_at'), 'credit_usage', ['created_at'])

    # 5. Admin users (role assignments for the approval chain)
    op.create_table(
        'admin_users',
        sa.Column('id', sa.UUID(), server_default=sa.text('uuid_generate_v4()'), nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.Column('user_id', sa.String(), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('email', sa.String(), nullable=True),
        sa.Column('role', postgresql.ENUM(name='adminrole', create_type=False), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='true'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_admin_users_user_id'), 'admin_users', ['user_id'])

    # 6. Audit logs
    op.create_table(
        'audit_logs',
        sa.Column('id', sa.UUID(), server_default=sa.text('uuid_generate_v4()'), nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.Column('entity_type', sa.String(), nullable=False),
        sa.Column('entity_id', sa.UUID(), nullable=False),
        sa.Column('action', sa.String(), nullable=False),
        sa.Column('user_id', sa.String(), nullable=True),
        sa.Column('changes', postgresql.JSONB(), nullable=False, server_default='{}'),
        sa.Column('request_id', sa.String(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_audit_logs_entity_type'), 'audit_logs', ['entity_type'])
    op.create_index(op.f('ix_audit_logs_entity_id'), 'audit_logs', ['entity_id'])
    op.create_index(op.f('ix_audit_logs_created_at'), 'audit_logs', ['created_at'])


def downgrade() -> None:
    """Drop all tables."""
    # Drop tables in reverse dependency order
    op.drop_table('audit_logs')
    op.drop_table('admin_users')
    op.drop_table('credit_usage')
    op.drop_table('credit_pools')
    op.drop_table('order_validations')
    op.drop_table('orders')

    op.execute('DROP TYPE IF EXISTS adminrole')
    op.execute('DROP TYPE IF EXISTS validationtype')
    op.execute('DROP TYPE IF EXISTS paymentmethod')
    op.execute('DROP TYPE IF EXISTS orderstatus')
