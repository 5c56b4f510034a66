"""create users table

Revision ID: 3f9c1a2b7d10
Revises:
Create Date: 2025-04-02 10:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = '3f9c1a2b7d10'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

PLAN_TYPES = ('BASIC', 'CORE', 'ADVANCED', 'PRO')
SUBSCRIPTION_STATUSES = (
    'ACTIVE', 'CANCELED', 'PAST_DUE', 'INCOMPLETE', 'INCOMPLETE_EXPIRED', 'TRIALING', 'UNPAID',
)


def upgrade() -> None:
    plan_type = sa.Enum(*PLAN_TYPES, name='plan_type')
    subscription_status = sa.Enum(*SUBSCRIPTION_STATUSES, name='subscription_status')

    op.create_table(
        'users',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('oauth_id', sa.String(), nullable=False),
        sa.Column('email', sa.String(), nullable=False),
        sa.Column('username', sa.String(), nullable=True),
        sa.Column('plan_type', plan_type, server_default='BASIC', nullable=False),
        sa.Column('subscription_status', subscription_status, server_default='UNPAID', nullable=False),
        sa.Column('subscription_start_date', sa.TIMESTAMP(), nullable=True),
        sa.Column('subscription_end_date', sa.TIMESTAMP(), nullable=True),
        sa.Column('messages_used', sa.Integer(), server_default='0', nullable=False),
        sa.Column('documents_used', sa.Integer(), server_default='0', nullable=False),
        sa.Column('message_left', sa.Integer(), nullable=True),
        sa.Column('document_left', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.TIMESTAMP(), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('messages_used >= 0 AND documents_used >= 0', name='ck_users_used_non_negative'),
        sa.CheckConstraint(
            '(message_left IS NULL OR message_left >= 0) AND (document_left IS NULL OR document_left >= 0)',
            name='ck_users_left_non_negative',
        ),
    )
    op.create_index('ix_users_oauth_id', 'users', ['oauth_id'], unique=True)
    op.create_index('ix_users_email', 'users', ['email'], unique=True)
    op.create_index('ix_users_plan_type', 'users', ['plan_type'])
    op.create_index('ix_users_subscription_status', 'users', ['subscription_status'])
    op.create_index('ix_users_subscription_end_date', 'users', ['subscription_end_date'])


def downgrade() -> None:
    op.drop_index('ix_users_subscription_end_date', table_name='users')
    op.drop_index('ix_users_subscription_status', table_name='users')
    op.drop_index('ix_users_plan_type', table_name='users')
    op.drop_index('ix_users_email', table_name='users')
    op.drop_index('ix_users_oauth_id', table_name='users')
    op.drop_table('users')
    sa.Enum(name='subscription_status').drop(op.get_bind(), checkfirst=True)
    sa.Enum(name='plan_type').drop(op.get_bind(), checkfirst=True)
