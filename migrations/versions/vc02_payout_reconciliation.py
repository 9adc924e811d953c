"""Track gateway payments on payouts, reserve tips, add payout locks

Revision ID: vc02
Revises: vc01
Create Date: 2026-07-14

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'vc02'
down_revision = 'vc01'
branch_labels = None
depends_on = None


def upgrade():
    with op.batch_alter_table('payouts') as batch_op:
        batch_op.add_column(sa.Column('gateway_payment_id', sa.String(128), nullable=True))
        batch_op.add_column(sa.Column('memo', sa.String(255), nullable=True))
        batch_op.add_column(sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True))
        batch_op.alter_column('status', server_default='initiated')

    with op.batch_alter_table('tips') as batch_op:
        batch_op.add_column(sa.Column('payout_id', sa.Integer(), nullable=True))
        batch_op.create_foreign_key('fk_tips_payout_id_payouts', 'payouts', ['payout_id'], ['id'])
        batch_op.create_index('ix_tips_payout_id', ['payout_id'])

    op.create_table(
        'payout_locks',
        sa.Column('creator_username', sa.String(120), primary_key=True),
        sa.Column('acquired_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )


def downgrade():
    op.drop_table('payout_locks')

    with op.batch_alter_table('tips') as batch_op:
        batch_op.drop_index('ix_tips_payout_id')
        batch_op.drop_constraint('fk_tips_payout_id_payouts', type_='foreignkey')
        batch_op.drop_column('payout_id')

    with op.batch_alter_table('payouts') as batch_op:
        batch_op.alter_column('status', server_default='completed')
        batch_op.drop_column('updated_at')
        batch_op.drop_column('memo')
        batch_op.drop_column('gateway_payment_id')
