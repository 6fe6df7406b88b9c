"""Assessment schema

Revision ID: 001
Revises: 
Create Date: 2026-10-19 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def _id():
    return sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True,
                     server_default=sa.text('gen_random_uuid()'))


def upgrade():
    # Question bank
    op.create_table(
        'assessment_questions',
        _id(),
        sa.Column('category_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('question_type', sa.String(), nullable=False),
        sa.Column('question_text', sa.Text(), nullable=False),
        sa.Column('question_image_url', sa.String(), nullable=True),
        sa.Column('explanation', sa.Text(), nullable=True),
        sa.Column('difficulty_level', sa.String(), nullable=True),
        sa.Column('points_value', sa.Numeric(), server_default=sa.text('1')),
        sa.Column('time_limit_seconds', sa.Integer(), nullable=True),
        sa.Column('tags', postgresql.ARRAY(sa.String()), server_default=sa.text("'{}'")),
        sa.Column('is_active', sa.Boolean(), server_default=sa.text('true')),
        sa.Column('created_by', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'))
    )

    op.create_table(
        'assessment_question_options',
        _id(),
        sa.Column('question_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('assessment_questions.id', ondelete='CASCADE'), nullable=False),
        sa.Column('option_text', sa.Text(), nullable=True),
        sa.Column('option_image_url', sa.String(), nullable=True),
        sa.Column('is_correct', sa.Boolean(), server_default=sa.text('false')),
        sa.Column('order_index', sa.Integer(), server_default=sa.text('0')),
        sa.Column('explanation', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'))
    )

    op.create_table(
        'assessment_text_answers',
        _id(),
        sa.Column('question_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('assessment_questions.id', ondelete='CASCADE'), nullable=False, unique=True),
        sa.Column('correct_answer', sa.Text(), nullable=False),
        sa.Column('case_sensitive', sa.Boolean(), server_default=sa.text('false')),
        sa.Column('exact_match', sa.Boolean(), server_default=sa.text('false')),
        sa.Column('alternate_answers', postgresql.ARRAY(sa.Text()), server_default=sa.text("'{}'")),
        sa.Column('keywords', postgresql.ARRAY(sa.Text()), server_default=sa.text("'{}'")),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'))
    )

    # Templates
    op.create_table(
        'assessment_templates',
        _id(),
        sa.Column('title', sa.String(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('instructions', sa.Text(), nullable=True),
        sa.Column('category_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('total_questions', sa.Integer(), server_default=sa.text('0')),
        sa.Column('time_limit_minutes', sa.Integer(), server_default=sa.text('30')),
        sa.Column('passing_percentage', sa.Integer(), server_default=sa.text('70')),
        sa.Column('randomize_questions', sa.Boolean(), server_default=sa.text('false')),
        sa.Column('randomize_options', sa.Boolean(), server_default=sa.text('false')),
        sa.Column('show_results_immediately', sa.Boolean(), server_default=sa.text('true')),
        sa.Column('allow_retakes', sa.Boolean(), server_default=sa.text('true')),
        sa.Column('max_attempts', sa.Integer(), nullable=True),
        sa.Column('difficulty_distribution', postgresql.JSONB(), nullable=True),
        sa.Column('is_active', sa.Boolean(), server_default=sa.text('true')),
        sa.Column('is_public', sa.Boolean(), server_default=sa.text('true')),
        sa.Column('created_by', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'))
    )

    op.create_table(
        'assessment_template_questions',
        _id(),
        sa.Column('template_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('assessment_templates.id', ondelete='CASCADE'), nullable=False),
        sa.Column('question_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('assessment_questions.id', ondelete='CASCADE'), nullable=False),
        sa.Column('order_index', sa.Integer(), server_default=sa.text('0')),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()')),
        sa.UniqueConstraint('template_id', 'question_id', name='uq_template_question')
    )

    # Sessions and responses
    op.create_table(
        'student_assessment_sessions',
        _id(),
        sa.Column('student_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('template_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('assessment_templates.id'), nullable=False),
        sa.Column('session_token', sa.String(), nullable=False, unique=True),
        sa.Column('attempt_number', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(), nullable=False, server_default=sa.text("'in_progress'")),
        sa.Column('started_at', sa.DateTime(timezone=True), server_default=sa.text('now()')),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('total_questions', sa.Integer(), server_default=sa.text('0')),
        sa.Column('correct_answers', sa.Integer(), nullable=True),
        sa.Column('total_score', sa.Numeric(), nullable=True),
        sa.Column('percentage_score', sa.Integer(), nullable=True),
        sa.Column('passed', sa.Boolean(), nullable=True),
        sa.Column('time_spent_seconds', sa.Integer(), nullable=True),
        sa.Column('question_order', postgresql.JSONB(), nullable=True),
        sa.Column('metadata', postgresql.JSONB(), server_default=sa.text("'{}'::jsonb")),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()')),
        sa.CheckConstraint("status IN ('in_progress', 'completed', 'expired')", name='ck_session_status')
    )
    # At most one attempt in progress per student and template
    op.create_index(
        'uq_active_session_per_template',
        'student_assessment_sessions',
        ['student_id', 'template_id'],
        unique=True,
        postgresql_where=sa.text("status = 'in_progress'")
    )
    op.create_index(
        'ix_sessions_student_started',
        'student_assessment_sessions',
        ['student_id', 'started_at']
    )

    op.create_table(
        'student_assessment_responses',
        _id(),
        sa.Column('session_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('student_assessment_sessions.id', ondelete='CASCADE'), nullable=False),
        sa.Column('question_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('assessment_questions.id'), nullable=False),
        sa.Column('selected_option_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('text_answer', sa.Text(), nullable=True),
        sa.Column('is_correct', sa.Boolean(), nullable=False),
        sa.Column('points_earned', sa.Numeric(), server_default=sa.text('0')),
        sa.Column('time_spent_seconds', sa.Integer(), server_default=sa.text('0')),
        sa.Column('answered_at', sa.DateTime(timezone=True), server_default=sa.text('now()')),
        sa.UniqueConstraint('session_id', 'question_id', name='uq_response_per_question'),
        sa.CheckConstraint('time_spent_seconds >= 0', name='ck_response_time_spent')
    )

    # Quick assessments
    op.create_table(
        'assessments',
        _id(),
        sa.Column('user_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('started_at', sa.DateTime(timezone=True), server_default=sa.text('now()')),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('score', sa.Integer(), nullable=True),
        sa.Column('passed', sa.Boolean(), nullable=True)
    )

    op.create_table(
        'assessment_responses',
        _id(),
        sa.Column('assessment_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('assessments.id', ondelete='CASCADE'), nullable=False),
        sa.Column('q_index', sa.Integer(), nullable=True),
        sa.Column('question_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('answer_text', sa.Text(), nullable=True),
        sa.Column('correct', sa.Boolean(), nullable=False)
    )


def downgrade():
    op.drop_table('assessment_responses')
    op.drop_table('assessments')
    op.drop_table('student_assessment_responses')
    op.drop_index('ix_sessions_student_started', table_name='student_assessment_sessions')
    op.drop_index('uq_active_session_per_template', table_name='student_assessment_sessions')
    op.drop_table('student_assessment_sessions')
    op.drop_table('assessment_template_questions')
    op.drop_table('assessment_templates')
    op.drop_table('assessment_text_answers')
    op.drop_table('assessment_question_options')
    op.drop_table('assessment_questions')
