from alembic import op

revision = '0002_unique_payment_id'
down_revision = '0001_init'
branch_labels = None
depends_on = None

def upgrade():
    # One captured payment settles at most one order
    op.create_unique_constraint('uq_orders_payment_id', 'orders', ['payment_id'])

def downgrade():
    op.drop_constraint('uq_orders_payment_id', 'orders', type_='unique')
