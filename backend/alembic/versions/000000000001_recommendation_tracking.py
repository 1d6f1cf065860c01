"""recommendation_tracking

Revision ID: 000000000001
Revises:
Create Date: 2026-10-15 00:00:00.000000

Baseline: recommendation tracking, blocked candidates, candidate feedback and
event logs.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '000000000001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

RECOMMENDATION_STATUSES = ('pending', 'viewed', 'accepted', 'declined', 'not_interested', 'expired')


def upgrade() -> None:
    op.create_table(
        'recommendation_tracking',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column('candidate_id', sa.String(length=255), nullable=False),
        sa.Column('source', sa.String(length=50), nullable=False),
        sa.Column('candidate_name', sa.String(length=255), nullable=False),
        sa.Column('category', sa.String(length=100), nullable=False),
        sa.Column('status', sa.Enum(*RECOMMENDATION_STATUSES, name='recommendationstatus'), nullable=False),
        sa.Column('confidence_score', sa.Float(), nullable=False),
        sa.Column('last_shown_at', sa.DateTime(), nullable=False),
        sa.Column('refresh_count', sa.Integer(), nullable=False),
        sa.Column('viewed_at', sa.DateTime(), nullable=True),
        sa.Column('responded_at', sa.DateTime(), nullable=True),
        sa.Column('decline_reason', sa.String(length=100), nullable=True),
        sa.Column('block_reason', sa.Text(), nullable=True),
        sa.Column('linked_entity_id', sa.String(length=255), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id', 'candidate_id', name='uq_recommendation_tracking_user_candidate'),
        sa.CheckConstraint(
            'confidence_score >= 0 AND confidence_score <= 1',
            name='ck_recommendation_tracking_confidence',
        ),
    )
    op.create_index('ix_recommendation_tracking_user_id', 'recommendation_tracking', ['user_id'])
    op.create_index(
        'idx_recommendation_tracking_user_status',
        'recommendation_tracking',
        ['user_id', 'status', 'last_shown_at'],
    )

    op.create_table(
        'blocked_candidates',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column('candidate_id', sa.String(length=255), nullable=False),
        sa.Column('candidate_name', sa.String(length=255), nullable=False),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('blocked_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id', 'candidate_id', name='uq_blocked_candidates_user_candidate'),
    )
    op.create_index('ix_blocked_candidates_user_id', 'blocked_candidates', ['user_id'])

    op.create_table(
        'candidate_feedback',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column('candidate_id', sa.String(length=255), nullable=False),
        sa.Column('rating', sa.Enum('up', 'down', name='feedbackrating'), nullable=False),
        sa.Column('tags', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_candidate_feedback_user_id', 'candidate_feedback', ['user_id'])
    op.create_index('ix_candidate_feedback_candidate_id', 'candidate_feedback', ['candidate_id'])

    op.create_table(
        'event_logs',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('user_id', sa.String(length=64), nullable=True),
        sa.Column('event_name', sa.String(), nullable=False),
        sa.Column('properties', sa.JSON(), nullable=True),
        sa.Column('request_id', sa.String(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_event_logs_created_at', 'event_logs', ['created_at'])
    op.create_index('ix_event_logs_user_id', 'event_logs', ['user_id'])
    op.create_index('ix_event_logs_event_name', 'event_logs', ['event_name'])


def downgrade() -> None:
    op.drop_index('ix_event_logs_event_name', table_name='event_logs')
    op.drop_index('ix_event_logs_user_id', table_name='event_logs')
    op.drop_index('ix_event_logs_created_at', table_name='event_logs')
    op.drop_table('event_logs')
    op.drop_index('ix_candidate_feedback_candidate_id', table_name='candidate_feedback')
    op.drop_index('ix_candidate_feedback_user_id', table_name='candidate_feedback')
    op.drop_table('candidate_feedback')
    op.drop_index('ix_blocked_candidates_user_id', table_name='blocked_candidates')
    op.drop_table('blocked_candidates')
    op.drop_index('idx_recommendation_tracking_user_status', table_name='recommendation_tracking')
    op.drop_index('ix_recommendation_tracking_user_id', table_name='recommendation_tracking')
    op.drop_table('recommendation_tracking')
    sa.Enum(name='feedbackrating').drop(op.get_bind(), checkfirst=True)
    sa.Enum(name='recommendationstatus').drop(op.get_bind(), checkfirst=True)
