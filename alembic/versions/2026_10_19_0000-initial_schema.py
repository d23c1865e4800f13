"""initial schema

Revision ID: 2026_10_19_0000
Revises:
Create Date: 2026-10-19 08:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID


# revision identifiers, used by Alembic.
revision: str = '2026_10_19_0000'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

CHARACTERS = "('sadie', 'cole', 'nora', 'elliott', 'clara', 'sean')"


def upgrade() -> None:
    """Create initial database schema."""

    # ========================================================================
    # Create accounts table
    # ========================================================================
    op.create_table(
        'accounts',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('email', sa.String(320), nullable=False),
        sa.Column('stripe_customer_id', sa.String(255), nullable=True),
        sa.Column('subscription_status', sa.String(20), nullable=False, server_default='trial'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        # Constraints
        sa.CheckConstraint(
            "subscription_status IN ('trial', 'active', 'past_due', 'canceled')",
            name='ck_account_subscription_status',
        ),
        sa.UniqueConstraint('email', name='uq_accounts_email'),
        sa.UniqueConstraint('stripe_customer_id', name='uq_accounts_stripe_customer'),
    )
    op.create_index('idx_accounts_subscription_status', 'accounts', ['subscription_status'])

    # ========================================================================
    # Create account_characters table
    # ========================================================================
    op.create_table(
        'account_characters',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('account_id', UUID(as_uuid=True), nullable=False),
        sa.Column('character', sa.String(20), nullable=False),
        sa.Column('added_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        sa.CheckConstraint(f"character IN {CHARACTERS}", name='ck_account_character_name'),
        sa.UniqueConstraint('account_id', 'character', name='uq_account_character'),
        sa.ForeignKeyConstraint(['account_id'], ['accounts.id'], name='fk_account_characters_account', ondelete='CASCADE'),
    )
    op.create_index('idx_account_characters_account_id', 'account_characters', ['account_id'])

    # ========================================================================
    # Create telegram_links table
    # ========================================================================
    op.create_table(
        'telegram_links',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('chat_id', sa.String(255), nullable=False),
        sa.Column('account_id', UUID(as_uuid=True), nullable=False),
        sa.Column('character', sa.String(20), nullable=False),
        sa.Column('linked_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        sa.CheckConstraint(f"character IN {CHARACTERS}", name='ck_telegram_link_character'),
        sa.UniqueConstraint('chat_id', 'character', name='uq_telegram_link_chat_character'),
        sa.ForeignKeyConstraint(['account_id'], ['accounts.id'], name='fk_telegram_links_account', ondelete='CASCADE'),
    )
    op.create_index('idx_telegram_links_chat_id', 'telegram_links', ['chat_id'])
    op.create_index('idx_telegram_links_account_id', 'telegram_links', ['account_id'])

    # ========================================================================
    # Create pending_links table
    # ========================================================================
    op.create_table(
        'pending_links',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('email', sa.String(320), nullable=False),
        sa.Column('chat_id', sa.String(255), nullable=False),
        sa.Column('character', sa.String(20), nullable=False),
        sa.Column('first_name', sa.String(255), nullable=True),
        sa.Column('token', sa.String(64), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        sa.CheckConstraint(f"character IN {CHARACTERS}", name='ck_pending_link_character'),
        sa.UniqueConstraint('token', name='uq_pending_links_token'),
        sa.UniqueConstraint('chat_id', 'character', name='uq_pending_link_chat_character'),
    )
    op.create_index('idx_pending_links_expires_at', 'pending_links', ['expires_at'])

    # ========================================================================
    # Create trials table
    # ========================================================================
    op.create_table(
        'trials',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('chat_id', sa.String(255), nullable=False),
        sa.Column('character', sa.String(20), nullable=False),
        sa.Column('messages_remaining', sa.Integer(), nullable=False, server_default='25'),
        sa.Column('trial_exhausted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('bump_given', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        sa.CheckConstraint(f"character IN {CHARACTERS}", name='ck_trial_character'),
        sa.CheckConstraint('messages_remaining >= 0', name='ck_trial_messages_non_negative'),
        sa.UniqueConstraint('chat_id', 'character', name='uq_trial_chat_character'),
    )
    op.create_index(
        'idx_trials_exhausted', 'trials', ['trial_exhausted_at'],
        postgresql_where=sa.text('messages_remaining = 0'),
    )

    # ========================================================================
    # Create subscriptions table
    # ========================================================================
    op.create_table(
        'subscriptions',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('account_id', UUID(as_uuid=True), nullable=False),
        sa.Column('stripe_subscription_id', sa.String(255), nullable=False),
        sa.Column('tier', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(50), nullable=False),
        sa.Column('current_period_start', sa.DateTime(timezone=True), nullable=True),
        sa.Column('current_period_end', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        sa.CheckConstraint('tier > 0', name='ck_subscription_tier_positive'),
        sa.UniqueConstraint('stripe_subscription_id', name='uq_subscriptions_stripe_id'),
        sa.ForeignKeyConstraint(['account_id'], ['accounts.id'], name='fk_subscriptions_account', ondelete='CASCADE'),
    )
    op.create_index('idx_subscriptions_account_created', 'subscriptions', ['account_id', 'created_at'])


def downgrade() -> None:
    """Drop all tables."""
    op.drop_table('subscriptions')
    op.drop_table('trials')
    op.drop_table('pending_links')
    op.drop_table('telegram_links')
    op.drop_table('account_characters')
    op.drop_table('accounts')
