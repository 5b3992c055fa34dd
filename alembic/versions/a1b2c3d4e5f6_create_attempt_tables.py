"""create quiz, attempt, profile, engagement and assignment tables

Revision ID: a1b2c3d4e5f6
Revises:
Create Date: 2026-09-14 10:05:00.000000

"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = 'a1b2c3d4e5f6'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        'quizzes',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('created_by', sa.BigInteger(), nullable=False),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('topic', sa.String(255), nullable=False, server_default=''),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('is_published', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('total_questions', sa.Integer(), nullable=False, server_default='0'),
        *_timestamps(),
    )
    op.create_index('ix_quizzes_created_by', 'quizzes', ['created_by'])

    op.create_table(
        'questions',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('quiz_id', sa.Integer(), sa.ForeignKey('quizzes.id', ondelete='CASCADE'), nullable=False),
        sa.Column('question_text', sa.Text(), nullable=False),
        sa.Column('question_type', sa.String(20), nullable=False, server_default='multiple_choice'),
        sa.Column('options', sa.JSON(), nullable=True),
        sa.Column('correct_answer', sa.Text(), nullable=False),
        sa.Column('explanation', sa.Text(), nullable=True),
        sa.Column('difficulty', sa.String(10), nullable=False, server_default='medium'),
        sa.Column('points', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('order_index', sa.Integer(), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint('quiz_id', 'order_index', name='uq_questions_quiz_order'),
        sa.CheckConstraint('points > 0', name='ck_questions_points_positive'),
    )
    op.create_index('ix_questions_quiz_id', 'questions', ['quiz_id'])

    op.create_table(
        'quiz_attempts',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.BigInteger(), nullable=False),
        sa.Column('quiz_id', sa.Integer(), sa.ForeignKey('quizzes.id'), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='created'),
        sa.Column('total_questions', sa.Integer(), nullable=False),
        sa.Column('started_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('score', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('correct_answers', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_points', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('time_spent_seconds', sa.Integer(), nullable=False, server_default='0'),
        *_timestamps(),
        sa.CheckConstraint('total_questions > 0', name='ck_quiz_attempts_total_positive'),
        sa.CheckConstraint(
            'correct_answers >= 0 AND correct_answers <= total_questions',
            name='ck_quiz_attempts_correct_range',
        ),
        sa.CheckConstraint('score >= 0 AND score <= 100', name='ck_quiz_attempts_score_range'),
        sa.CheckConstraint('time_spent_seconds >= 0', name='ck_quiz_attempts_time_non_negative'),
    )
    op.create_index('ix_quiz_attempts_user_id', 'quiz_attempts', ['user_id'])
    op.create_index('ix_quiz_attempts_quiz_id', 'quiz_attempts', ['quiz_id'])
    op.create_index('idx_attempts_user_completed', 'quiz_attempts', ['user_id', 'completed_at'])

    op.create_table(
        'question_attempts',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('quiz_attempt_id', sa.Integer(), sa.ForeignKey('quiz_attempts.id', ondelete='CASCADE'), nullable=False),
        sa.Column('question_id', sa.Integer(), sa.ForeignKey('questions.id'), nullable=False),
        sa.Column('user_answer', sa.Text(), nullable=True),
        sa.Column('is_correct', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('points_earned', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('time_spent_seconds', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('answered_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint('quiz_attempt_id', 'question_id', name='uq_question_attempts_attempt_question'),
        sa.CheckConstraint('points_earned >= 0', name='ck_question_attempts_points_non_negative'),
        sa.CheckConstraint('time_spent_seconds >= 0', name='ck_question_attempts_time_non_negative'),
    )
    op.create_index('ix_question_attempts_quiz_attempt_id', 'question_attempts', ['quiz_attempt_id'])

    op.create_table(
        'profiles',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.BigInteger(), nullable=False),
        sa.Column('points', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('streak_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('max_streak', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('quizzes_completed', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_activity', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.CheckConstraint('streak_count >= 0', name='ck_profiles_streak_non_negative'),
    )
    op.create_index('ix_profiles_user_id', 'profiles', ['user_id'], unique=True)

    op.create_table(
        'user_engagement_metrics',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.BigInteger(), nullable=False),
        sa.Column('date', sa.Date(), nullable=False),
        sa.Column('quizzes_completed', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_time_spent_seconds', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_score', sa.Integer(), nullable=False, server_default='0'),
        *_timestamps(),
        sa.UniqueConstraint('user_id', 'date', name='uq_engagement_user_date'),
    )
    op.create_index('idx_engagement_date', 'user_engagement_metrics', ['date'])

    op.create_table(
        'quiz_assignments',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('quiz_id', sa.Integer(), sa.ForeignKey('quizzes.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', sa.BigInteger(), nullable=False),
        sa.Column('assigned_by', sa.BigInteger(), nullable=False),
        sa.Column('assigned_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('due_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('is_completed', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint('quiz_id', 'user_id', name='uq_assignments_quiz_user'),
    )
    op.create_index('ix_quiz_assignments_quiz_id', 'quiz_assignments', ['quiz_id'])
    op.create_index('ix_quiz_assignments_user_id', 'quiz_assignments', ['user_id'])


def downgrade() -> None:
    op.drop_table('quiz_assignments')
    op.drop_table('user_engagement_metrics')
    op.drop_table('profiles')
    op.drop_table('question_attempts')
    op.drop_table('quiz_attempts')
    op.drop_table('questions')
    op.drop_table('quizzes')
