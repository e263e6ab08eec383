"""
Initial checkout schema

Revision ID: 0001_initial_checkout_schema
Revises:
Create Date: 2026-10-19

This migration:
1. Creates catalog tables (products, product_variants, stock_adjustments)
2. Creates accounts and session carts
3. Creates coupons, orders and pending payments
4. Adds the unique indexes the payment pipeline relies on
"""

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic
revision = '0001_initial_checkout_schema'
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
    ]


def upgrade():
    # =========================================================================
    # 1. Accounts
    # =========================================================================
    op.create_table(
        'users',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('email', sa.String(255), nullable=False, unique=True),
        sa.Column('password_hash', sa.Text(), nullable=False),
        sa.Column('first_name', sa.String(100)),
        sa.Column('last_name', sa.String(100)),
        sa.Column('phone', sa.String(50)),
        *_timestamps(),
    )
    op.create_table(
        'user_addresses',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('user_id', sa.String(36), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('title', sa.String(100)),
        sa.Column('full_name', sa.String(255), nullable=False),
        sa.Column('phone', sa.String(50)),
        sa.Column('address', sa.Text(), nullable=False),
        sa.Column('city', sa.String(100), nullable=False),
        sa.Column('district', sa.String(100), nullable=False),
        sa.Column('postal_code', sa.String(20)),
        sa.Column('is_default', sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
    )

    # =========================================================================
    # 2. Catalog and carts
    # =========================================================================
    op.create_table(
        'products',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('name', sa.Text(), nullable=False),
        sa.Column('slug', sa.String(255), nullable=False, unique=True),
        sa.Column('sku', sa.String(255)),
        sa.Column('base_price', sa.Numeric(10, 2), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )
    op.create_table(
        'product_variants',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('product_id', sa.String(36), sa.ForeignKey('products.id', ondelete='CASCADE'), nullable=False),
        sa.Column('sku', sa.String(255), unique=True),
        sa.Column('size', sa.String(50)),
        sa.Column('color', sa.String(50)),
        sa.Column('price', sa.Numeric(10, 2), nullable=False),
        sa.Column('stock', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )
    op.create_index('idx_variant_product', 'product_variants', ['product_id'])

    op.create_table(
        'cart_items',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('session_id', sa.String(255), nullable=False),
        sa.Column('product_id', sa.String(36), sa.ForeignKey('products.id', ondelete='CASCADE'), nullable=False),
        sa.Column('variant_id', sa.String(36), sa.ForeignKey('product_variants.id', ondelete='CASCADE')),
        sa.Column('quantity', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('idx_cart_session', 'cart_items', ['session_id'])

    # =========================================================================
    # 3. Coupons, orders, pending payments
    # =========================================================================
    op.create_table(
        'coupons',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('code', sa.String(50), nullable=False, unique=True),
        sa.Column('description', sa.Text()),
        sa.Column('discount_type', sa.String(20), nullable=False),
        sa.Column('discount_value', sa.Numeric(10, 2), nullable=False),
        sa.Column('min_order_amount', sa.Numeric(10, 2)),
        sa.Column('usage_limit', sa.Integer()),
        sa.Column('per_user_limit', sa.Integer()),
        sa.Column('usage_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('starts_at', sa.DateTime()),
        sa.Column('expires_at', sa.DateTime()),
        sa.Column('is_influencer', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('influencer_name', sa.String(255)),
        sa.Column('commission_type', sa.String(20)),
        sa.Column('commission_value', sa.Numeric(10, 2)),
        sa.Column('commission_earned', sa.Numeric(10, 2), nullable=False, server_default='0'),
        sa.Column('commission_paid', sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
    )

    op.create_table(
        'orders',
        sa.Column('id', sa.String(36), primary_key=True),
        # Equals the PayTR merchant_oid; uniqueness blocks double materialization
        sa.Column('order_number', sa.String(64), nullable=False, unique=True),
        sa.Column('user_id', sa.String(36), sa.ForeignKey('users.id', ondelete='SET NULL')),
        sa.Column('customer_name', sa.String(255), nullable=False),
        sa.Column('customer_email', sa.String(255), nullable=False),
        sa.Column('customer_phone', sa.String(50), nullable=False),
        sa.Column('shipping_address', sa.JSON(), nullable=False),
        sa.Column('subtotal', sa.Numeric(10, 2), nullable=False),
        sa.Column('shipping_cost', sa.Numeric(10, 2), nullable=False, server_default='0'),
        sa.Column('discount_amount', sa.Numeric(10, 2), nullable=False, server_default='0'),
        sa.Column('coupon_code', sa.String(50)),
        sa.Column('total', sa.Numeric(10, 2), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='confirmed'),
        sa.Column('payment_method', sa.String(50)),
        sa.Column('payment_status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('notes', sa.Text()),
        sa.Column('tracking_number', sa.String(100)),
        sa.Column('tracking_url', sa.Text()),
        sa.Column('shipping_carrier', sa.String(100)),
        *_timestamps(),
    )
    op.create_index('idx_order_email', 'orders', ['customer_email'])
    op.create_index('idx_order_created', 'orders', ['created_at'])

    op.create_table(
        'order_items',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('order_id', sa.String(36), sa.ForeignKey('orders.id', ondelete='CASCADE'), nullable=False),
        sa.Column('product_id', sa.String(36), sa.ForeignKey('products.id', ondelete='SET NULL')),
        sa.Column('variant_id', sa.String(36), sa.ForeignKey('product_variants.id', ondelete='SET NULL')),
        sa.Column('product_name', sa.Text(), nullable=False),
        sa.Column('variant_details', sa.Text()),
        sa.Column('price', sa.Numeric(10, 2), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('subtotal', sa.Numeric(10, 2), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('idx_orderitem_order', 'order_items', ['order_id'])

    op.create_table(
        'coupon_redemptions',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('coupon_id', sa.String(36), sa.ForeignKey('coupons.id', ondelete='CASCADE'), nullable=False),
        sa.Column('order_id', sa.String(36), sa.ForeignKey('orders.id', ondelete='CASCADE'), nullable=False, unique=True),
        sa.Column('user_id', sa.String(36), sa.ForeignKey('users.id', ondelete='SET NULL')),
        sa.Column('discount_amount', sa.Numeric(10, 2), nullable=False),
        sa.Column('commission_type', sa.String(20)),
        sa.Column('commission_value', sa.Numeric(10, 2)),
        sa.Column('commission_amount', sa.Numeric(10, 2), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('idx_redemption_coupon_user', 'coupon_redemptions', ['coupon_id', 'user_id'])

    op.create_table(
        'stock_adjustments',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('variant_id', sa.String(36), sa.ForeignKey('product_variants.id', ondelete='CASCADE'), nullable=False),
        sa.Column('order_id', sa.String(36), sa.ForeignKey('orders.id', ondelete='SET NULL')),
        sa.Column('author_id', sa.String(36)),
        sa.Column('adjustment_type', sa.String(20), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('previous_stock', sa.Integer(), nullable=False),
        sa.Column('new_stock', sa.Integer(), nullable=False),
        sa.Column('reason', sa.Text(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('idx_stock_adjustment_variant', 'stock_adjustments', ['variant_id', 'created_at'])

    op.create_table(
        'pending_payments',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('merchant_oid', sa.String(64), nullable=False, unique=True),
        sa.Column('session_id', sa.String(255), nullable=False),
        sa.Column('user_id', sa.String(36)),
        sa.Column('customer_name', sa.String(255), nullable=False),
        sa.Column('customer_email', sa.String(255), nullable=False),
        sa.Column('customer_phone', sa.String(50), nullable=False),
        sa.Column('shipping_address', sa.JSON(), nullable=False),
        sa.Column('cart_items', sa.JSON(), nullable=False),
        sa.Column('subtotal', sa.Numeric(10, 2), nullable=False),
        sa.Column('shipping_cost', sa.Numeric(10, 2), nullable=False),
        sa.Column('discount_amount', sa.Numeric(10, 2), nullable=False, server_default='0'),
        sa.Column('coupon_code', sa.String(50)),
        sa.Column('total', sa.Numeric(10, 2), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('failure_reason', sa.Text()),
        sa.Column('create_account', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('password_hash', sa.Text()),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.Column('completed_at', sa.DateTime()),
        *_timestamps(),
    )
    op.create_index('idx_pending_payment_status_expiry', 'pending_payments', ['status', 'expires_at'])


def downgrade():
    op.drop_table('pending_payments')
    op.drop_table('stock_adjustments')
    op.drop_table('coupon_redemptions')
    op.drop_table('order_items')
    op.drop_table('orders')
    op.drop_table('coupons')
    op.drop_table('cart_items')
    op.drop_table('product_variants')
    op.drop_table('products')
    op.drop_table('user_addresses')
    op.drop_table('users')
