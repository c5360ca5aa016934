"""create user, score, vote and notification tables

Revision ID: 3c1e7a9b2d40
Revises:
Create Date: 2026-01-14 10:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '3c1e7a9b2d40'
down_revision = None
branch_labels = None
depends_on = None


def _state_column(name, nullable=False):
    # Enum values are stored as plain strings (native_enum=False in the models)
    return sa.Column(name, sa.String(length=32), nullable=nullable)


def upgrade():
    op.create_table(
        'user',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('username', sa.String(length=64), nullable=False),
        sa.Column('password_hash', sa.String(length=256), nullable=False),
    )
    op.create_index('ix_user_username', 'user', ['username'], unique=True)

    op.create_table(
        'score',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('owner_id', sa.Integer(), sa.ForeignKey('user.id'), nullable=False),
        sa.Column('machine_name', sa.String(length=100), nullable=False),
        sa.Column('location_name', sa.String(length=200), nullable=True),
        sa.Column('claimed_value', sa.BigInteger(), nullable=False),
        sa.Column('photo_reference', sa.String(length=512), nullable=True),
        _state_column('validation_state'),
        _state_column('precheck_status'),
        _state_column('precheck_machine_confidence', nullable=True),
        _state_column('precheck_score_confidence', nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('resolved_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index('ix_score_owner_id', 'score', ['owner_id'])
    op.create_index('ix_score_validation_state', 'score', ['validation_state'])
    op.create_index('ix_score_created_at', 'score', ['created_at'])

    op.create_table(
        'vote',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('score_id', sa.Integer(), sa.ForeignKey('score.id', ondelete='CASCADE'), nullable=False),
        sa.Column('voter_id', sa.Integer(), sa.ForeignKey('user.id'), nullable=False),
        _state_column('verdict'),
        _state_column('reason_code', nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint('score_id', 'voter_id', name='uq_vote_score_voter'),
    )
    op.create_index('ix_vote_score_id', 'vote', ['score_id'])

    op.create_table(
        'notification',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('recipient_id', sa.Integer(), sa.ForeignKey('user.id'), nullable=False),
        _state_column('type'),
        sa.Column('score_id', sa.Integer(), sa.ForeignKey('score.id', ondelete='CASCADE'), nullable=False),
        sa.Column('machine_name', sa.String(length=100), nullable=False),
        sa.Column('claimed_value', sa.BigInteger(), nullable=False),
        sa.Column('title', sa.String(length=120), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('read', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('delivered_at', sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint('score_id', 'type', name='uq_notification_score_type'),
    )
    op.create_index('ix_notification_recipient_id', 'notification', ['recipient_id'])


def downgrade():
    op.drop_index('ix_notification_recipient_id', table_name='notification')
    op.drop_table('notification')
    op.drop_index('ix_vote_score_id', table_name='vote')
    op.drop_table('vote')
    op.drop_index('ix_score_created_at', table_name='score')
    op.drop_index('ix_score_validation_state', table_name='score')
    op.drop_index('ix_score_owner_id', table_name='score')
    op.drop_table('score')
    op.drop_index('ix_user_username', table_name='user')
    op.drop_table('user')
