"""OTP auth core tables

Revision ID: 001
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('public_id', sa.String(36), nullable=False),
        sa.Column('email', sa.String(), nullable=False),
        sa.Column('password_hash', sa.String(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_users_public_id', 'users', ['public_id'], unique=True)
    op.create_index('ix_users_email', 'users', ['email'], unique=True)

    op.create_table(
        'profiles',
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), primary_key=True),
        sa.Column('full_name', sa.String(120), nullable=True),
        sa.Column('phone_e164', sa.String(20), nullable=True),
        sa.Column('phone_verified_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('phone_e164', name='uq_profiles_phone_e164'),
    )

    op.create_table(
        'refresh_tokens',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('token_hash', sa.String(128), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.Column('revoked', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_refresh_tokens_user_id', 'refresh_tokens', ['user_id'])
    op.create_index('ix_refresh_tokens_token_hash', 'refresh_tokens', ['token_hash'], unique=True)

    op.create_table(
        'otp_challenges',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('phone_e164', sa.String(20), nullable=False),
        sa.Column('purpose', sa.String(32), nullable=False, server_default='login'),
        sa.Column('code_hash', sa.String(128), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_sent_at', sa.DateTime(), nullable=False),
        sa.Column('locked_until', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_otp_challenges_phone_e164', 'otp_challenges', ['phone_e164'])
    op.create_index(
        'ix_otp_challenges_phone_purpose_created',
        'otp_challenges',
        ['phone_e164', 'purpose', 'created_at'],
    )

    op.create_table(
        'otp_request_logs',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('phone_e164', sa.String(20), nullable=False),
        sa.Column('purpose', sa.String(32), nullable=False, server_default='login'),
        sa.Column('ip_address', sa.String(64), nullable=True),
        sa.Column('sent', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_otp_request_logs_phone_created', 'otp_request_logs', ['phone_e164', 'created_at'])
    op.create_index('ix_otp_request_logs_ip_created', 'otp_request_logs', ['ip_address', 'created_at'])


def downgrade():
    op.drop_index('ix_otp_request_logs_ip_created', table_name='otp_request_logs')
    op.drop_index('ix_otp_request_logs_phone_created', table_name='otp_request_logs')
    op.drop_table('otp_request_logs')
    op.drop_index('ix_otp_challenges_phone_purpose_created', table_name='otp_challenges')
    op.drop_index('ix_otp_challenges_phone_e164', table_name='otp_challenges')
    op.drop_table('otp_challenges')
    op.drop_index('ix_refresh_tokens_token_hash', table_name='refresh_tokens')
    op.drop_index('ix_refresh_tokens_user_id', table_name='refresh_tokens')
    op.drop_table('refresh_tokens')
    op.drop_table('profiles')
    op.drop_index('ix_users_email', table_name='users')
    op.drop_index('ix_users_public_id', table_name='users')
    op.drop_table('users')
