"""Create users, api keys and OAuth tables

Revision ID: c7d21e9a4f10
Revises:
Create Date: 2026-10-16 10:12:41.532118

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = 'c7d21e9a4f10'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    # Create users table
    op.create_table(
        'users',
        sa.Column('id', sa.String(length=36), primary_key=True, nullable=False),
        sa.Column('email', sa.String(length=320), nullable=False),
        sa.Column('username', sa.String(length=50), nullable=False),
        sa.Column('role', sa.String(length=20), nullable=False, server_default='user'),
        sa.Column('password_hash', sa.String(length=1024), nullable=True,
                  comment='NULL for accounts created through OAuth only'),
        sa.Column('email_verified', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('display_name', sa.String(length=255), nullable=True),
        sa.Column('avatar_url', sa.String(length=1024), nullable=True),
        sa.Column('bio', sa.Text(), nullable=True),
        sa.Column('location', sa.String(length=255), nullable=True),
        sa.Column('website', sa.String(length=1024), nullable=True),
        sa.Column('last_login_at', sa.Integer(), nullable=True, comment='Epoch seconds'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index(op.f('ix_users_email'), 'users', ['email'], unique=True)
    op.create_index(op.f('ix_users_username'), 'users', ['username'], unique=True)

    # Create api_keys table
    op.create_table(
        'api_keys',
        sa.Column('id', sa.String(length=36), primary_key=True, nullable=False),
        sa.Column('user_id', sa.String(length=36), nullable=False),
        sa.Column('name', sa.String(length=100), nullable=False),
        sa.Column('key_hash', sa.String(length=1024), nullable=False),
        sa.Column('scopes', sa.JSON(), nullable=False),
        sa.Column('expires_at', sa.Integer(), nullable=True),
        sa.Column('last_used_at', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
    )
    op.create_index(op.f('ix_api_keys_user_id'), 'api_keys', ['user_id'], unique=False)

    # Create oauth_accounts table
    op.create_table(
        'oauth_accounts',
        sa.Column('id', sa.String(length=36), primary_key=True, nullable=False),
        sa.Column('user_id', sa.String(length=36), nullable=False),
        sa.Column('provider', sa.String(length=50), nullable=False),
        sa.Column('provider_id', sa.String(length=255), nullable=False),
        sa.Column('email', sa.String(length=320), nullable=False),
        sa.Column('username', sa.String(length=255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.UniqueConstraint('provider', 'provider_id', name='uq_oauth_account'),
    )
    op.create_index(op.f('ix_oauth_accounts_user_id'), 'oauth_accounts', ['user_id'], unique=False)

    # Create oauth_states table
    op.create_table(
        'oauth_states',
        sa.Column('id', sa.String(length=36), primary_key=True, nullable=False),
        sa.Column('state', sa.String(length=128), nullable=False,
                  comment='Random component of the state payload'),
        sa.Column('provider', sa.String(length=50), nullable=False),
        sa.Column('redirect_url', sa.String(length=2048), nullable=False, server_default='/'),
        sa.Column('client_ip', sa.String(length=64), nullable=False, server_default='unknown'),
        sa.Column('expires_at', sa.Integer(), nullable=False),
    )
    op.create_index(op.f('ix_oauth_states_state'), 'oauth_states', ['state'], unique=True)
    op.create_index(op.f('ix_oauth_states_client_ip'), 'oauth_states', ['client_ip'], unique=False)
    op.create_index(op.f('ix_oauth_states_expires_at'), 'oauth_states', ['expires_at'], unique=False)

    # Create oauth_device_codes table
    op.create_table(
        'oauth_device_codes',
        sa.Column('id', sa.String(length=36), primary_key=True, nullable=False),
        sa.Column('device_code', sa.String(length=255), nullable=False),
        sa.Column('user_code', sa.String(length=32), nullable=False),
        sa.Column('provider', sa.String(length=50), nullable=False),
        sa.Column('client_ip', sa.String(length=64), nullable=False, server_default='unknown'),
        sa.Column('user_agent', sa.String(length=512), nullable=True),
        sa.Column('scopes', sa.JSON(), nullable=False),
        sa.Column('expires_at', sa.Integer(), nullable=False),
        sa.Column('interval', sa.Integer(), nullable=False, server_default='5',
                  comment='Minimum seconds between polls'),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_poll_at', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index(op.f('ix_oauth_device_codes_device_code'), 'oauth_device_codes', ['device_code'], unique=True)
    op.create_index(op.f('ix_oauth_device_codes_expires_at'), 'oauth_device_codes', ['expires_at'], unique=False)

    # Create oauth_pending_registrations table
    op.create_table(
        'oauth_pending_registrations',
        sa.Column('id', sa.String(length=36), primary_key=True, nullable=False),
        sa.Column('token', sa.String(length=128), nullable=False),
        sa.Column('provider', sa.String(length=50), nullable=False),
        sa.Column('provider_id', sa.String(length=255), nullable=False),
        sa.Column('email', sa.String(length=320), nullable=False),
        sa.Column('provider_username', sa.String(length=255), nullable=True),
        sa.Column('expires_at', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index(op.f('ix_oauth_pending_registrations_token'), 'oauth_pending_registrations', ['token'], unique=True)
    op.create_index(op.f('ix_oauth_pending_registrations_expires_at'), 'oauth_pending_registrations', ['expires_at'], unique=False)


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index(op.f('ix_oauth_pending_registrations_expires_at'), table_name='oauth_pending_registrations')
    op.drop_index(op.f('ix_oauth_pending_registrations_token'), table_name='oauth_pending_registrations')
    op.drop_table('oauth_pending_registrations')
    op.drop_index(op.f('ix_oauth_device_codes_expires_at'), table_name='oauth_device_codes')
    op.drop_index(op.f('ix_oauth_device_codes_device_code'), table_name='oauth_device_codes')
    op.drop_table('oauth_device_codes')
    op.drop_index(op.f('ix_oauth_states_expires_at'), table_name='oauth_states')
    op.drop_index(op.f('ix_oauth_states_client_ip'), table_name='oauth_states')
    op.drop_index(op.f('ix_oauth_states_state'), table_name='oauth_states')
    op.drop_table('oauth_states')
    op.drop_index(op.f('ix_oauth_accounts_user_id'), table_name='oauth_accounts')
    op.drop_table('oauth_accounts')
    op.drop_index(op.f('ix_api_keys_user_id'), table_name='api_keys')
    op.drop_table('api_keys')
    op.drop_index(op.f('ix_users_username'), table_name='users')
    op.drop_index(op.f('ix_users_email'), table_name='users')
    op.drop_table('users')
