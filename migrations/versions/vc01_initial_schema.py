"""Initial schema: users, podcasts, flags, tips, payout requests, payouts

Revision ID: vc01
Revises:
Create Date: 2026-06-02

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'vc01'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'users',
        sa.Column('username', sa.String(120), primary_key=True),
        sa.Column('wallet_address', sa.String(128), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
    )

    op.create_table(
        'podcasts',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('duration', sa.String(32), nullable=True),
        sa.Column('audio_url', sa.Text(), nullable=False),
        sa.Column('image_url', sa.Text(), nullable=True),
        sa.Column('genre', sa.String(80), nullable=True),
        sa.Column('tags', sa.JSON(), nullable=False),
        sa.Column('creator_pi_username', sa.String(120), nullable=False),
        sa.Column('uploaded_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.Column('flag_count', sa.Integer(), server_default=sa.text('0'), nullable=False),
        sa.Column('status', sa.String(16), server_default='visible', nullable=False),
    )
    op.create_index('ix_podcasts_creator_pi_username', 'podcasts', ['creator_pi_username'])
    op.create_index('ix_podcasts_uploaded_at', 'podcasts', ['uploaded_at'])

    op.create_table(
        'flags',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('podcast_id', sa.Integer(), sa.ForeignKey('podcasts.id', ondelete='CASCADE'), nullable=False),
        sa.Column('flagged_by', sa.String(120), nullable=False),
        sa.Column('flagged_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.UniqueConstraint('podcast_id', 'flagged_by', name='uq_flags_podcast_flagged_by'),
    )

    op.create_table(
        'payouts',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('creator_username', sa.String(120), nullable=False),
        sa.Column('gross_amount', sa.Numeric(20, 6), nullable=False),
        sa.Column('platform_fee', sa.Numeric(20, 6), nullable=False),
        sa.Column('amount_paid', sa.Numeric(20, 6), nullable=False),
        sa.Column('paid_to', sa.String(128), nullable=True),
        sa.Column('txid', sa.String(128), nullable=True),
        sa.Column('status', sa.String(32), server_default='completed', nullable=False),
        sa.Column('is_manual', sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('payout_date', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
    )
    op.create_index('ix_payouts_creator_username', 'payouts', ['creator_username'])
    op.create_index('ix_payouts_status', 'payouts', ['status'])

    op.create_table(
        'tips',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('podcast_id', sa.Integer(), nullable=True),
        sa.Column('tipper_username', sa.String(120), nullable=False),
        sa.Column('recipient_username', sa.String(120), nullable=False),
        sa.Column('amount', sa.Numeric(20, 6), nullable=False),
        sa.Column('paid', sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
    )
    op.create_index('ix_tips_podcast_id', 'tips', ['podcast_id'])
    op.create_index('ix_tips_recipient_username', 'tips', ['recipient_username'])

    op.create_table(
        'payout_requests',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('username', sa.String(120), nullable=False, unique=True),
        sa.Column('requested_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.Column('fulfilled', sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column('fulfilled_at', sa.DateTime(timezone=True), nullable=True),
    )


def downgrade():
    op.drop_table('payout_requests')
    op.drop_index('ix_tips_recipient_username', table_name='tips')
    op.drop_index('ix_tips_podcast_id', table_name='tips')
    op.drop_table('tips')
    op.drop_index('ix_payouts_status', table_name='payouts')
    op.drop_index('ix_payouts_creator_username', table_name='payouts')
    op.drop_table('payouts')
    op.drop_table('flags')
    op.drop_index('ix_podcasts_uploaded_at', table_name='podcasts')
    op.drop_index('ix_podcasts_creator_pi_username', table_name='podcasts')
    op.drop_table('podcasts')
    op.drop_table('users')
