
from alembic import op
import sqlalchemy as sa

revision = '0001_init'
down_revision = None
branch_labels = None
depends_on = None

def upgrade():
    op.create_table(
        'orders',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('order_number', sa.String(50), nullable=True, unique=True),
        sa.Column('user_id', sa.String(64), nullable=False),
        sa.Column('user_email', sa.String(255), nullable=True),
        sa.Column('shipping_address', sa.JSON, nullable=False),
        sa.Column('payment_method', sa.String(20), nullable=False),
        sa.Column('items_price', sa.Numeric(12, 2), nullable=False),
        sa.Column('shipping_price', sa.Numeric(12, 2), nullable=False),
        sa.Column('tax_price', sa.Numeric(12, 2), nullable=False),
        sa.Column('total_price', sa.Numeric(12, 2), nullable=False),
        sa.Column('is_paid', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('payment_id', sa.String(100), nullable=True),
        sa.Column('payment_order_ref', sa.String(100), nullable=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='processing'),
        sa.Column('shipped_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('delivered_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancel_reason', sa.String(500), nullable=True),
        sa.Column('updated_by', sa.String(64), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint('total_price = items_price + shipping_price + tax_price', name='ck_orders_total'),
    )
    op.create_index('ix_orders_order_number', 'orders', ['order_number'])
    op.create_index('ix_orders_user_id', 'orders', ['user_id'])
    op.create_index('ix_orders_status', 'orders', ['status'])
    op.create_index('ix_orders_created_at', 'orders', ['created_at'])
    op.create_table(
        'order_items',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('order_id', sa.Integer, sa.ForeignKey('orders.id'), nullable=False),
        sa.Column('product_id', sa.String(64), nullable=False),
        sa.Column('title', sa.String(200), nullable=False),
        sa.Column('image', sa.String(500), nullable=True),
        sa.Column('size', sa.String(20), nullable=True),
        sa.Column('color', sa.String(40), nullable=True),
        sa.Column('quantity', sa.Integer, nullable=False),
        sa.Column('unit_price', sa.Numeric(12, 2), nullable=False),
        sa.CheckConstraint('quantity >= 1', name='ck_order_items_quantity'),
        sa.CheckConstraint('unit_price >= 0', name='ck_order_items_unit_price'),
    )
    op.create_index('ix_order_items_order_id', 'order_items', ['order_id'])

def downgrade():
    op.drop_table('order_items')
    op.drop_table('orders')
