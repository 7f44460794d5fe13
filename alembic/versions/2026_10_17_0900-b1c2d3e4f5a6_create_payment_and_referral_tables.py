"""create_payment_and_referral_tables

Revision ID: b1c2d3e4f5a6
Revises:
Create Date: 2026-10-17 09:00:00.000000+00:00

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = 'b1c2d3e4f5a6'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps(with_updated: bool = True) -> list:
    columns = [sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('now()'), nullable=False)]
    if with_updated:
        columns.append(sa.Column('updated_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('now()'), nullable=False))
    return columns


def upgrade() -> None:
    op.create_table(
        'users',
        sa.Column('id', sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('full_name', sa.String(length=255), nullable=True),
        sa.Column('user_type', sa.String(length=20), nullable=False),
        sa.Column('referral_code', sa.String(length=20), nullable=True),
        *_timestamps(with_updated=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('referral_code'),
    )
    op.create_index(op.f('ix_users_email'), 'users', ['email'], unique=True)

    op.create_table(
        'students',
        sa.Column('id', sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column('user_id', sa.BigInteger(), nullable=False),
        sa.Column('full_name', sa.String(length=255), nullable=True),
        sa.Column('is_paid', sa.Boolean(), nullable=False, server_default='false'),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.UniqueConstraint('user_id'),
    )

    op.create_table(
        'carts',
        sa.Column('id', sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column('user_id', sa.BigInteger(), nullable=False),
        sa.Column('items', sa.JSON(), nullable=False),
        sa.Column('total_amount', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.UniqueConstraint('user_id'),
    )

    op.create_table(
        'payments',
        sa.Column('id', sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column('user_id', sa.BigInteger(), nullable=False),
        sa.Column('student_id', sa.BigInteger(), nullable=True),
        sa.Column('amount', sa.Integer(), nullable=False, comment='Amount in base currency units'),
        sa.Column('currency', sa.String(length=3), nullable=False, server_default='NGN'),
        sa.Column('reference', sa.String(length=100), nullable=False, comment='Gateway reference, globally unique'),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('authorization_url', sa.String(length=500), nullable=True),
        sa.Column('access_code', sa.String(length=100), nullable=True),
        sa.Column('channel', sa.String(length=50), nullable=True),
        sa.Column('paid_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('raw_initialize', sa.JSON(), nullable=True),
        sa.Column('raw_verify', sa.JSON(), nullable=True),
        sa.Column('items', sa.JSON(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['student_id'], ['students.id'], ondelete='SET NULL'),
        sa.UniqueConstraint('reference'),
    )
    op.create_index(op.f('ix_payments_user_id'), 'payments', ['user_id'], unique=False)
    op.create_index(op.f('ix_payments_status'), 'payments', ['status'], unique=False)

    op.create_table(
        'enrollments',
        sa.Column('id', sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column('user_id', sa.BigInteger(), nullable=False),
        sa.Column('subject', sa.String(length=100), nullable=False),
        sa.Column('grade', sa.String(length=20), nullable=False),
        sa.Column('term', sa.String(length=50), nullable=False, server_default=''),
        sa.Column('payment_id', sa.BigInteger(), nullable=False),
        sa.Column('purchase_price', sa.Integer(), nullable=False),
        sa.Column('purchased_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='true'),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['payment_id'], ['payments.id'], ondelete='CASCADE'),
        sa.UniqueConstraint('user_id', 'subject', 'grade', 'term', name='uq_enrollments_natural_key'),
    )
    op.create_index(op.f('ix_enrollments_user_id'), 'enrollments', ['user_id'], unique=False)
    op.create_index('ix_enrollments_user_active', 'enrollments', ['user_id', 'is_active'], unique=False)

    op.create_table(
        'referrals',
        sa.Column('id', sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column('referrer_id', sa.BigInteger(), nullable=False, comment='User who referred'),
        sa.Column('referred_email', sa.String(length=255), nullable=False, comment='Invited e-mail, lowercase'),
        sa.Column('referred_user_id', sa.BigInteger(), nullable=True, comment='Bound once the invitee registers or pays'),
        sa.Column('status', sa.String(length=20), nullable=False, comment='pending/completed/expired'),
        sa.Column('reward_amount', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('reward_claimed', sa.Boolean(), nullable=False, server_default='false'),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['referrer_id'], ['users.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['referred_user_id'], ['users.id'], ondelete='SET NULL'),
        sa.UniqueConstraint('referrer_id', 'referred_email', name='uq_referrals_referrer_email'),
    )
    op.create_index(op.f('ix_referrals_referrer_id'), 'referrals', ['referrer_id'], unique=False)
    op.create_index(op.f('ix_referrals_referred_email'), 'referrals', ['referred_email'], unique=False)
    op.create_index(op.f('ix_referrals_referred_user_id'), 'referrals', ['referred_user_id'], unique=False)
    op.create_index(op.f('ix_referrals_status'), 'referrals', ['status'], unique=False)

    op.create_table(
        'referral_profiles',
        sa.Column('id', sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column('user_id', sa.BigInteger(), nullable=False),
        sa.Column('bank_name', sa.String(length=100), nullable=True),
        sa.Column('bank_code', sa.String(length=20), nullable=True),
        sa.Column('account_number', sa.String(length=20), nullable=True),
        sa.Column('account_name', sa.String(length=255), nullable=True),
        sa.Column('commission_rate', sa.Numeric(5, 4), nullable=False, server_default='0.10'),
        sa.Column('total_earnings', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('pending_earnings', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('paid_out_earnings', sa.Integer(), nullable=False, server_default='0'),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.UniqueConstraint('user_id'),
    )

    op.create_table(
        'referral_transactions',
        sa.Column('id', sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column('referrer_id', sa.BigInteger(), nullable=False),
        sa.Column('referral_id', sa.BigInteger(), nullable=True),
        sa.Column('user_id', sa.BigInteger(), nullable=False, comment='Paying user'),
        sa.Column('student_id', sa.BigInteger(), nullable=True),
        sa.Column('payment_id', sa.BigInteger(), nullable=True),
        sa.Column('amount_paid', sa.Integer(), nullable=False),
        sa.Column('commission_amount', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('paid_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('payout_batch_id', sa.String(length=100), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        *_timestamps(with_updated=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['referrer_id'], ['users.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['referral_id'], ['referrals.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['student_id'], ['students.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['payment_id'], ['payments.id'], ondelete='SET NULL'),
        sa.UniqueConstraint('payment_id'),
    )
    op.create_index(op.f('ix_referral_transactions_referrer_id'), 'referral_transactions', ['referrer_id'], unique=False)
    op.create_index(op.f('ix_referral_transactions_referral_id'), 'referral_transactions', ['referral_id'], unique=False)
    op.create_index(op.f('ix_referral_transactions_status'), 'referral_transactions', ['status'], unique=False)
    op.create_index(op.f('ix_referral_transactions_payout_batch_id'), 'referral_transactions', ['payout_batch_id'], unique=False)
    op.create_index('ix_referral_transactions_referrer_created', 'referral_transactions', ['referrer_id', 'created_at'], unique=False)


def downgrade() -> None:
    op.drop_table('referral_transactions')
    op.drop_table('referral_profiles')
    op.drop_table('referrals')
    op.drop_table('enrollments')
    op.drop_table('payments')
    op.drop_table('carts')
    op.drop_table('students')
    op.drop_table('users')
