"""Create procurement, customer order, payment and notification tables

Revision ID: 0001_procurement_payments
Revises:
Create Date: 2026-10-19

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers
revision = '0001_procurement_payments'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table('user_profiles',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('user_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('username', sa.String(length=100), nullable=False),
        sa.Column('display_name', sa.String(length=200), nullable=True),
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.Column('phone_number', sa.String(length=20), nullable=True),
        sa.Column('role', sa.String(length=50), server_default='user', nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id'),
        sa.UniqueConstraint('username')
    )

    op.create_table('supplier_discounts',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('supplier_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('product_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('min_quantity', sa.Integer(), nullable=False),
        sa.Column('discount_percent', sa.Float(), nullable=False),
        sa.Column('note', sa.String(length=400), nullable=True),
        sa.Column('is_active', sa.Boolean(), server_default=sa.text('true'), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.CheckConstraint('min_quantity >= 1', name='discount_min_quantity_check'),
        sa.CheckConstraint('discount_percent >= 0 AND discount_percent <= 100', name='discount_percent_range_check'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_supplier_discounts_supplier_id', 'supplier_discounts', ['supplier_id'])
    op.create_index('ix_supplier_discounts_product_id', 'supplier_discounts', ['product_id'])
    op.create_index('ix_supplier_discounts_supplier_product', 'supplier_discounts', ['supplier_id', 'product_id'])

    op.create_table('admin_orders',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('total_cost', sa.Float(), nullable=False),
        sa.Column('discount_total', sa.Float(), server_default='0.0', nullable=False),
        sa.Column('contact', sa.String(length=255), nullable=False),
        sa.Column('payment_method', sa.String(length=50), server_default='Cash Payment', nullable=False),
        sa.Column('slip_url', sa.String(length=500), nullable=True),
        sa.Column('status', sa.String(length=20), server_default='Pending', nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_by', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.CheckConstraint('total_cost >= 0', name='admin_order_total_cost_check'),
        sa.PrimaryKeyConstraint('id')
    )

    op.create_table('admin_order_items',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('order_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False),
        sa.Column('product_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('name', sa.String(length=200), nullable=False),
        sa.Column('supplier_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('unit_price', sa.Float(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('line_subtotal', sa.Float(), server_default='0.0', nullable=False),
        sa.Column('discount_percent', sa.Float(), server_default='0.0', nullable=False),
        sa.Column('discount_value', sa.Float(), server_default='0.0', nullable=False),
        sa.Column('line_total', sa.Float(), server_default='0.0', nullable=False),
        sa.Column('applied_discount_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('supplier_status', sa.String(length=20), server_default='Pending', nullable=False),
        sa.CheckConstraint('quantity > 0', name='admin_order_item_quantity_check'),
        sa.ForeignKeyConstraint(['order_id'], ['admin_orders.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('order_id', 'position', name='unique_admin_order_item_position')
    )
    op.create_index('ix_admin_order_items_order_supplier', 'admin_order_items', ['order_id', 'supplier_id'])

    op.create_table('admin_cancelled_orders',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('original_order_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('supplier_label', sa.String(length=200), server_default='N/A', nullable=False),
        sa.Column('supplier_ids', postgresql.JSONB(), nullable=True),
        sa.Column('items', postgresql.JSONB(), nullable=False),
        sa.Column('total_cost', sa.Float(), nullable=False),
        sa.Column('discount_total', sa.Float(), server_default='0.0', nullable=False),
        sa.Column('payment_method', sa.String(length=50), server_default='Cash Payment', nullable=False),
        sa.Column('contact', sa.String(length=255), server_default='N/A', nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('status', sa.String(length=20), server_default='Cancelled', nullable=False),
        sa.Column('reason', sa.String(length=50), server_default='cancelled', nullable=False),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.Column('cancelled_by', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('cancelled_by_name', sa.String(length=200), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )

    op.create_table('orders',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('user_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('contact', sa.String(length=255), nullable=False),
        sa.Column('payment_method', sa.String(length=50), nullable=False),
        sa.Column('items', postgresql.JSONB(), nullable=False),
        sa.Column('total_amount', sa.Float(), nullable=False),
        sa.Column('status', sa.String(length=20), server_default='Pending', nullable=False),
        sa.Column('cancel_reason', sa.String(length=500), nullable=True),
        sa.Column('stripe_session_id', sa.String(length=200), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.CheckConstraint('total_amount >= 0', name='order_total_amount_check'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('stripe_session_id')
    )
    op.create_index('ix_orders_user_id', 'orders', ['user_id'])

    op.create_table('payments',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('payment_ref', sa.String(length=100), nullable=False),
        sa.Column('payment_name', sa.String(length=255), nullable=False),
        sa.Column('order_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('user_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('supplier_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('method', sa.String(length=20), nullable=False),
        sa.Column('payment_status', sa.String(length=30), server_default='pending', nullable=False),
        sa.Column('amount', sa.Float(), nullable=True),
        sa.Column('currency', sa.String(length=10), server_default='lkr', nullable=False),
        sa.Column('customer_email', sa.String(length=255), nullable=True),
        sa.Column('description', sa.String(length=500), nullable=True),
        sa.Column('stripe_session_id', sa.String(length=200), nullable=True),
        sa.Column('stripe_payment_intent_id', sa.String(length=200), nullable=True),
        sa.Column('card_brand', sa.String(length=50), nullable=True),
        sa.Column('card_last4', sa.String(length=4), nullable=True),
        sa.Column('receipt_url', sa.String(length=500), nullable=True),
        sa.Column('slip_url', sa.String(length=500), nullable=True),
        sa.Column('slip_original_name', sa.String(length=255), nullable=True),
        sa.Column('slip_uploaded_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('payment_metadata', postgresql.JSONB(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('order_id', 'payment_ref', 'method', name='unique_order_payment_method'),
        sa.UniqueConstraint('stripe_payment_intent_id', name='unique_stripe_payment_intent')
    )
    op.create_index('ix_payments_order_id', 'payments', ['order_id'])
    op.create_index('ix_payments_supplier_id', 'payments', ['supplier_id'])
    op.create_index('ix_payments_payment_status', 'payments', ['payment_status'])
    op.create_index('ix_payments_order_method', 'payments', ['order_id', 'method'])

    op.create_table('notifications',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('recipient_role', sa.String(length=50), nullable=False),
        sa.Column('title', sa.String(length=200), nullable=False),
        sa.Column('message', sa.String(length=1000), nullable=False),
        sa.Column('type', sa.String(length=120), server_default='general', nullable=False),
        sa.Column('status', sa.String(length=20), server_default='unread', nullable=False),
        sa.Column('dedupe_key', sa.String(length=300), nullable=True),
        sa.Column('notification_metadata', postgresql.JSONB(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('recipient_role', 'dedupe_key', name='unique_role_dedupe_key')
    )
    op.create_index('ix_notifications_role_created', 'notifications', ['recipient_role', 'created_at'])


def downgrade():
    op.drop_index('ix_notifications_role_created', table_name='notifications')
    op.drop_table('notifications')

    op.drop_index('ix_payments_order_method', table_name='payments')
    op.drop_index('ix_payments_payment_status', table_name='payments')
    op.drop_index('ix_payments_supplier_id', table_name='payments')
    op.drop_index('ix_payments_order_id', table_name='payments')
    op.drop_table('payments')

    op.drop_index('ix_orders_user_id', table_name='orders')
    op.drop_table('orders')

    op.drop_table('admin_cancelled_orders')

    op.drop_index('ix_admin_order_items_order_supplier', table_name='admin_order_items')
    op.drop_table('admin_order_items')
    op.drop_table('admin_orders')

    op.drop_index('ix_supplier_discounts_supplier_product', table_name='supplier_discounts')
    op.drop_index('ix_supplier_discounts_product_id', table_name='supplier_discounts')
    op.drop_index('ix_supplier_discounts_supplier_id', table_name='supplier_discounts')
    op.drop_table('supplier_discounts')

    op.drop_table('user_profiles')
