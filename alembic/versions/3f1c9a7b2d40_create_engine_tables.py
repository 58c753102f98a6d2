"""create_engine_tables

Revision ID: 3f1c9a7b2d40
Revises:
Create Date: 2026-10-18 10:12:31.402117

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3f1c9a7b2d40'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table('users',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('username', sa.String(50), nullable=False),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('display_name', sa.String(100), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('coins', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_users_id', 'users', ['id'])
    op.create_index('ix_users_username', 'users', ['username'], unique=True)
    op.create_index('ix_users_email', 'users', ['email'], unique=True)

    op.create_table('questions',
        sa.Column('id', sa.String(64), nullable=False),
        sa.Column('prompt', sa.Text(), nullable=False),
        sa.Column('options_json', sa.Text(), nullable=False),
        sa.Column('correct_answer_json', sa.Text(), nullable=True),
        sa.Column('explanation', sa.Text(), nullable=True),
        sa.Column('category', sa.String(100), nullable=False),
        sa.Column('sub_category', sa.String(100), nullable=True),
        sa.Column('image_ref', sa.String(500), nullable=True),
        sa.Column('selection_key', sa.Float(), nullable=False),
        sa.Column('last_selected_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_questions_category', 'questions', ['category'])
    op.create_index('ix_questions_selection_key', 'questions', ['selection_key'])
    op.create_index('ix_questions_last_selected_at', 'questions', ['last_selected_at'])

    op.create_table('comprehensive_questions',
        sa.Column('id', sa.String(64), nullable=False),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('passage', sa.Text(), nullable=False),
        sa.Column('category', sa.String(100), nullable=False),
        sa.Column('sub_category', sa.String(100), nullable=True),
        sa.Column('selection_key', sa.Float(), nullable=False),
        sa.Column('last_selected_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_comprehensive_questions_category', 'comprehensive_questions', ['category'])
    op.create_index('ix_comprehensive_questions_selection_key', 'comprehensive_questions', ['selection_key'])
    op.create_index('ix_comprehensive_questions_last_selected_at', 'comprehensive_questions', ['last_selected_at'])

    op.create_table('sub_questions',
        sa.Column('id', sa.String(64), nullable=False),
        sa.Column('parent_id', sa.String(64), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False),
        sa.Column('prompt', sa.Text(), nullable=False),
        sa.Column('options_json', sa.Text(), nullable=False),
        sa.Column('correct_answer_json', sa.Text(), nullable=True),
        sa.Column('explanation', sa.Text(), nullable=True),
        sa.Column('category', sa.String(100), nullable=True),
        sa.Column('sub_category', sa.String(100), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['parent_id'], ['comprehensive_questions.id'], ondelete='CASCADE'),
        sa.UniqueConstraint('parent_id', 'position', name='uq_sub_question_position')
    )
    op.create_index('ix_sub_questions_parent_id', 'sub_questions', ['parent_id'])

    op.create_table('tests',
        sa.Column('id', sa.String(64), nullable=False),
        sa.Column('kind', sa.String(20), nullable=False),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('refs_json', sa.Text(), nullable=False),
        sa.Column('time_seconds', sa.Integer(), nullable=False),
        sa.Column('category', sa.String(100), nullable=True),
        sa.Column('sub_category', sa.String(100), nullable=True),
        sa.Column('starts_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('ends_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_by', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['created_by'], ['users.id'], ondelete='SET NULL')
    )
    op.create_index('ix_tests_kind', 'tests', ['kind'])

    op.create_table('attempt_sessions',
        sa.Column('id', sa.String(64), nullable=False),
        sa.Column('test_id', sa.String(64), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('test_kind', sa.String(20), nullable=False),
        sa.Column('answers_json', sa.Text(), nullable=False),
        sa.Column('tab_switch_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('time_taken', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('locked', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('locked_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('lock_fingerprint', sa.String(64), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['test_id'], ['tests.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.UniqueConstraint('test_id', 'user_id', 'test_kind', name='uq_session_owner')
    )
    op.create_index('ix_attempt_sessions_test_id', 'attempt_sessions', ['test_id'])
    op.create_index('ix_attempt_sessions_user_id', 'attempt_sessions', ['user_id'])
    op.create_index('ix_attempt_sessions_locked', 'attempt_sessions', ['locked'])

    op.create_table('attempt_results',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('attempt_id', sa.String(64), nullable=False),
        sa.Column('test_id', sa.String(64), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('test_kind', sa.String(20), nullable=False),
        sa.Column('total_questions', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_attempted', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_correct', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_score', sa.Float(), nullable=False, server_default='0'),
        sa.Column('accuracy', sa.Float(), nullable=False, server_default='0'),
        sa.Column('confidence', sa.Float(), nullable=False, server_default='0'),
        sa.Column('time_taken', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('tab_switch_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('category_scores_json', sa.Text(), nullable=False),
        sa.Column('question_results_json', sa.Text(), nullable=False),
        sa.Column('unresolved_json', sa.Text(), nullable=False),
        sa.Column('submitted_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['attempt_id'], ['attempt_sessions.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.UniqueConstraint('attempt_id')
    )
    op.create_index('ix_attempt_results_test_id', 'attempt_results', ['test_id'])
    op.create_index('ix_attempt_results_user_id', 'attempt_results', ['user_id'])

    op.create_table('challenges',
        sa.Column('id', sa.String(64), nullable=False),
        sa.Column('test_id', sa.String(64), nullable=False),
        sa.Column('creator_id', sa.Integer(), nullable=False),
        sa.Column('invited_id', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('winner_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('accepted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['test_id'], ['tests.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['creator_id'], ['users.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['invited_id'], ['users.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['winner_id'], ['users.id'], ondelete='SET NULL'),
        sa.UniqueConstraint('test_id')
    )
    op.create_index('ix_challenges_creator_id', 'challenges', ['creator_id'])
    op.create_index('ix_challenges_invited_id', 'challenges', ['invited_id'])
    op.create_index('ix_challenges_status', 'challenges', ['status'])

    op.create_table('coin_ledger',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('challenge_id', sa.String(64), nullable=True),
        sa.Column('delta', sa.Integer(), nullable=False),
        sa.Column('reason', sa.String(50), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['challenge_id'], ['challenges.id'], ondelete='SET NULL'),
        sa.UniqueConstraint('challenge_id', 'user_id', name='uq_ledger_challenge_user')
    )
    op.create_index('ix_coin_ledger_user_id', 'coin_ledger', ['user_id'])


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index('ix_coin_ledger_user_id', table_name='coin_ledger')
    op.drop_table('coin_ledger')
    op.drop_index('ix_challenges_status', table_name='challenges')
    op.drop_index('ix_challenges_invited_id', table_name='challenges')
    op.drop_index('ix_challenges_creator_id', table_name='challenges')
    op.drop_table('challenges')
    op.drop_index('ix_attempt_results_user_id', table_name='attempt_results')
    op.drop_index('ix_attempt_results_test_id', table_name='attempt_results')
    op.drop_table('attempt_results')
    op.drop_index('ix_attempt_sessions_locked', table_name='attempt_sessions')
    op.drop_index('ix_attempt_sessions_user_id', table_name='attempt_sessions')
    op.drop_index('ix_attempt_sessions_test_id', table_name='attempt_sessions')
    op.drop_table('attempt_sessions')
    op.drop_index('ix_tests_kind', table_name='tests')
    op.drop_table('tests')
    op.drop_index('ix_sub_questions_parent_id', table_name='sub_questions')
    op.drop_table('sub_questions')
    op.drop_index('ix_comprehensive_questions_last_selected_at', table_name='comprehensive_questions')
    op.drop_index('ix_comprehensive_questions_selection_key', table_name='comprehensive_questions')
    op.drop_index('ix_comprehensive_questions_category', table_name='comprehensive_questions')
    op.drop_table('comprehensive_questions')
    op.drop_index('ix_questions_last_selected_at', table_name='questions')
    op.drop_index('ix_questions_selection_key', table_name='questions')
    op.drop_index('ix_questions_category', table_name='questions')
    op.drop_table('questions')
    op.drop_index('ix_users_email', table_name='users')
    op.drop_index('ix_users_username', table_name='users')
    op.drop_index('ix_users_id', table_name='users')
    op.drop_table('users')
