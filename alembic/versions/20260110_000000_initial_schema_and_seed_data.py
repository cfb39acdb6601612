"""Initial schema and seed data for MedPrep AI

Revision ID: 20260110_000000
Revises: None
Create Date: 2026-01-10 00:00:00.000000

This is the initial migration that creates all tables of the MedPrep AI
backend and seeds default data. This includes:
- Accounts (tenants, users)
- Course content (categories, courses, quizzes, questions, submissions)
- Adaptive quizzes (sessions, results, performance snapshots)
- Billing (subscriptions, prospects, webhook retry queue)
- Audit log and knowledge base documents
- Default subject categories

Revision format: YYYYMMDD_HHMMSS_description

"""

from datetime import datetime, timezone
from typing import Sequence, Union
from uuid import uuid4

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "20260110_000000"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _document_columns():
    return [
        sa.Column("id", sa.String(64), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def upgrade() -> None:
    """Create all tables and seed initial data."""

    # Create mp_tenants table
    op.create_table(
        "mp_tenants",
        *_document_columns(),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("slug", sa.String(128), nullable=False),
        sa.Column("status", sa.String(32), nullable=False, server_default="active"),
        sa.Column("contact_email", sa.String(255), nullable=True),
        sa.Column("quotas", JSONB(), nullable=False, server_default="{}"),
        sa.Column("usage", JSONB(), nullable=False, server_default="{}"),
        sa.PrimaryKeyConstraint("id"),
        sa.Index("ix_mp_tenants_slug", "slug", unique=True),
    )

    # Create mp_users table
    op.create_table(
        "mp_users",
        *_document_columns(),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("name", sa.String(255), nullable=True),
        sa.Column("first_name", sa.String(128), nullable=True),
        sa.Column("last_name", sa.String(128), nullable=True),
        sa.Column("role", sa.String(32), nullable=False, server_default="student"),
        sa.Column("study_year", sa.String(16), nullable=True),
        sa.Column("student_level", sa.String(16), nullable=True),
        sa.Column("university", sa.String(255), nullable=True),
        sa.Column("specialization", sa.String(255), nullable=True),
        sa.Column("subscription_status", sa.String(32), nullable=False, server_default="none"),
        sa.Column("subscription_end_date", sa.DateTime(), nullable=True),
        sa.Column("tenant_id", sa.String(64), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["tenant_id"], ["mp_tenants.id"]),
        sa.Index("ix_mp_users_email", "email", unique=True),
        sa.Index("ix_mp_users_role", "role"),
        sa.Index("ix_mp_users_tenant_id", "tenant_id"),
    )

    # Create mp_categories table
    op.create_table(
        "mp_categories",
        *_document_columns(),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("slug", sa.String(255), nullable=True),
        sa.Column("parent_category_id", sa.String(64), nullable=True),
        sa.Column("level", sa.String(16), nullable=False, server_default="both"),
        sa.Column("adaptive_settings", JSONB(), nullable=False, server_default="{}"),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["parent_category_id"], ["mp_categories.id"]),
        sa.Index("ix_mp_categories_slug", "slug"),
    )

    # Create mp_courses table
    op.create_table(
        "mp_courses",
        *_document_columns(),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("level", sa.String(16), nullable=False, server_default="both"),
        sa.Column("author_id", sa.String(64), nullable=True),
        sa.Column("published", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["author_id"], ["mp_users.id"]),
    )

    # Create mp_quizzes table
    op.create_table(
        "mp_quizzes",
        *_document_columns(),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("course_id", sa.String(64), nullable=True),
        sa.Column("category_id", sa.String(64), nullable=True),
        sa.Column("question_ids", JSONB(), nullable=False, server_default="[]"),
        sa.Column("quiz_type", sa.String(32), nullable=False, server_default="standard"),
        sa.Column("published", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("generated_by_ai", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["course_id"], ["mp_courses.id"]),
        sa.ForeignKeyConstraint(["category_id"], ["mp_categories.id"]),
        sa.Index("ix_mp_quizzes_course_id", "course_id"),
    )

    # Create mp_questions table
    op.create_table(
        "mp_questions",
        *_document_columns(),
        sa.Column("question_text", sa.Text(), nullable=False),
        sa.Column("question_type", sa.String(32), nullable=False, server_default="multipleChoice"),
        sa.Column("options", JSONB(), nullable=False, server_default="[]"),
        sa.Column("explanation", sa.Text(), nullable=True),
        sa.Column("course_id", sa.String(64), nullable=True),
        sa.Column("category_id", sa.String(64), nullable=True),
        sa.Column("difficulty", sa.String(16), nullable=False, server_default="medium"),
        sa.Column("student_level", sa.String(16), nullable=False, server_default="both"),
        sa.Column("tags", JSONB(), nullable=False, server_default="[]"),
        sa.Column("adaptive_metadata", JSONB(), nullable=False, server_default="{}"),
        sa.Column("generated_by_ai", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("validated_by_expert", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["course_id"], ["mp_courses.id"]),
        sa.ForeignKeyConstraint(["category_id"], ["mp_categories.id"]),
        sa.Index("ix_mp_questions_category_id", "category_id"),
        sa.Index("ix_mp_questions_difficulty", "difficulty"),
        sa.Index("ix_mp_questions_student_level", "student_level"),
    )

    # Create mp_quiz_submissions table
    op.create_table(
        "mp_quiz_submissions",
        *_document_columns(),
        sa.Column("quiz_id", sa.String(64), nullable=False),
        sa.Column("student_id", sa.String(64), nullable=False),
        sa.Column("submission_date", sa.DateTime(), nullable=False),
        sa.Column("answers", JSONB(), nullable=False, server_default="[]"),
        sa.Column("final_score", sa.Float(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["quiz_id"], ["mp_quizzes.id"]),
        sa.ForeignKeyConstraint(["student_id"], ["mp_users.id"]),
        sa.Index("ix_mp_quiz_submissions_quiz_id", "quiz_id"),
        sa.Index("ix_mp_quiz_submissions_student_id", "student_id"),
        sa.Index("ix_mp_quiz_submissions_submission_date", "submission_date"),
    )

    # Create mp_adaptive_quiz_sessions table
    op.create_table(
        "mp_adaptive_quiz_sessions",
        *_document_columns(),
        sa.Column("session_id", sa.String(128), nullable=False),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("question_ids", JSONB(), nullable=False, server_default="[]"),
        sa.Column("status", sa.String(16), nullable=False, server_default="active"),
        sa.Column("based_on_analytics", JSONB(), nullable=False, server_default="{}"),
        sa.Column("question_distribution", JSONB(), nullable=False, server_default="{}"),
        sa.Column("config", JSONB(), nullable=False, server_default="{}"),
        sa.Column("student_level", sa.String(16), nullable=False, server_default="PASS"),
        sa.Column("expires_at", sa.DateTime(), nullable=True),
        sa.Column("questions_count", sa.Integer(), nullable=False, server_default="0"),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["user_id"], ["mp_users.id"]),
        sa.Index("ix_mp_adaptive_quiz_sessions_session_id", "session_id", unique=True),
        sa.Index("ix_mp_adaptive_quiz_sessions_user_id", "user_id"),
        sa.Index("ix_mp_adaptive_quiz_sessions_status", "status"),
        sa.Index("ix_mp_adaptive_quiz_sessions_created_at", "created_at"),
    )

    # Create mp_adaptive_quiz_results table
    op.create_table(
        "mp_adaptive_quiz_results",
        *_document_columns(),
        sa.Column("session_id", sa.String(64), nullable=False),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("overall_score", sa.Float(), nullable=False, server_default="0"),
        sa.Column("max_score", sa.Float(), nullable=False, server_default="0"),
        sa.Column("success_rate", sa.Float(), nullable=False, server_default="0"),
        sa.Column("time_spent", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("completed_at", sa.DateTime(), nullable=False),
        sa.Column("category_results", JSONB(), nullable=False, server_default="[]"),
        sa.Column("recommendations", JSONB(), nullable=False, server_default="[]"),
        sa.Column("progress_comparison", JSONB(), nullable=False, server_default="{}"),
        sa.Column("improvement_areas", JSONB(), nullable=False, server_default="[]"),
        sa.Column("strength_areas", JSONB(), nullable=False, server_default="[]"),
        sa.Column("next_adaptive_quiz_available_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["session_id"], ["mp_adaptive_quiz_sessions.id"]),
        sa.ForeignKeyConstraint(["user_id"], ["mp_users.id"]),
        sa.Index("ix_mp_adaptive_quiz_results_session_id", "session_id"),
        sa.Index("ix_mp_adaptive_quiz_results_user_id", "user_id"),
        sa.Index("ix_mp_adaptive_quiz_results_completed_at", "completed_at"),
    )

    # Create mp_user_performances table
    op.create_table(
        "mp_user_performances",
        *_document_columns(),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("overall_success_rate", sa.Float(), nullable=False, server_default="0"),
        sa.Column("total_quizzes_taken", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_questions_answered", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("category_performances", JSONB(), nullable=False, server_default="[]"),
        sa.Column("weakest_categories", JSONB(), nullable=False, server_default="[]"),
        sa.Column("strongest_categories", JSONB(), nullable=False, server_default="[]"),
        sa.Column("analysis_date", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["user_id"], ["mp_users.id"]),
        sa.Index("ix_mp_user_performances_user_id", "user_id", unique=True),
    )

    # Create mp_subscriptions table
    op.create_table(
        "mp_subscriptions",
        *_document_columns(),
        sa.Column("user_id", sa.String(64), nullable=True),
        sa.Column("provider", sa.String(32), nullable=False, server_default="stripe"),
        sa.Column("customer_id", sa.String(128), nullable=True),
        sa.Column("subscription_id", sa.String(128), nullable=False),
        sa.Column("product_id", sa.String(128), nullable=True),
        sa.Column("price_id", sa.String(128), nullable=True),
        sa.Column("status", sa.String(32), nullable=False, server_default="incomplete"),
        sa.Column("trial_end", sa.DateTime(), nullable=True),
        sa.Column("current_period_start", sa.DateTime(), nullable=True),
        sa.Column("current_period_end", sa.DateTime(), nullable=True),
        sa.Column("cancel_at_period_end", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("last_payment_at", sa.DateTime(), nullable=True),
        sa.Column("amount", sa.Float(), nullable=True),
        sa.Column("currency", sa.String(8), nullable=False, server_default="EUR"),
        sa.Column("history", JSONB(), nullable=False, server_default="[]"),
        sa.Column("extra_data", JSONB(), nullable=False, server_default="{}"),
        sa.PrimaryKeyConstraint("id"),
        sa.Index("ix_mp_subscriptions_user_id", "user_id"),
        sa.Index("ix_mp_subscriptions_customer_id", "customer_id"),
        sa.Index("ix_mp_subscriptions_subscription_id", "subscription_id", unique=True),
    )

    # Create mp_prospects table
    op.create_table(
        "mp_prospects",
        *_document_columns(),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("first_name", sa.String(128), nullable=True),
        sa.Column("last_name", sa.String(128), nullable=True),
        sa.Column("billing_cycle", sa.String(16), nullable=False, server_default="monthly"),
        sa.Column("selected_price", sa.String(128), nullable=True),
        sa.Column("status", sa.String(32), nullable=False, server_default="pending"),
        sa.Column("stripe_customer_id", sa.String(128), nullable=True),
        sa.Column("checkout_session_id", sa.String(255), nullable=True),
        sa.Column("subscription_id", sa.String(128), nullable=True),
        sa.Column("utm_source", sa.String(255), nullable=True),
        sa.Column("utm_medium", sa.String(255), nullable=True),
        sa.Column("utm_campaign", sa.String(255), nullable=True),
        sa.Column("extra_data", JSONB(), nullable=False, server_default="{}"),
        sa.Column("attempt_count", sa.Integer(), nullable=False, server_default="0"),
        sa.PrimaryKeyConstraint("id"),
        sa.Index("ix_mp_prospects_email", "email"),
        sa.Index("ix_mp_prospects_status", "status"),
        sa.Index("ix_mp_prospects_checkout_session_id", "checkout_session_id"),
    )

    # Create mp_webhook_retry_queue table
    op.create_table(
        "mp_webhook_retry_queue",
        *_document_columns(),
        sa.Column("event_id", sa.String(255), nullable=False),
        sa.Column("event_type", sa.String(128), nullable=False),
        sa.Column("payload", JSONB(), nullable=False, server_default="{}"),
        sa.Column("retry_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_retries", sa.Integer(), nullable=False, server_default="3"),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("status", sa.String(16), nullable=False, server_default="pending"),
        sa.Column("next_retry_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.Index("ix_mp_webhook_retry_queue_event_id", "event_id", unique=True),
        sa.Index("ix_mp_webhook_retry_queue_status", "status"),
        sa.Index("ix_mp_webhook_retry_queue_next_retry_at", "next_retry_at"),
    )

    # Create mp_audit_logs table
    op.create_table(
        "mp_audit_logs",
        *_document_columns(),
        sa.Column("user_id", sa.String(64), nullable=True),
        sa.Column("action", sa.String(64), nullable=False),
        sa.Column("collection", sa.String(64), nullable=True),
        sa.Column("document_id", sa.String(64), nullable=True),
        sa.Column("diff", JSONB(), nullable=True),
        sa.Column("details", JSONB(), nullable=True),
        sa.Column("severity", sa.String(16), nullable=True),
        sa.Column("timestamp", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.Index("ix_mp_audit_logs_user_id", "user_id"),
        sa.Index("ix_mp_audit_logs_action", "action"),
        sa.Index("ix_mp_audit_logs_collection", "collection"),
        sa.Index("ix_mp_audit_logs_timestamp", "timestamp"),
    )

    # Create mp_knowledge_base table
    op.create_table(
        "mp_knowledge_base",
        *_document_columns(),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("original_file_name", sa.String(255), nullable=False),
        sa.Column("document_type", sa.String(8), nullable=False),
        sa.Column("file_path", sa.String(1024), nullable=False),
        sa.Column("file_size", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("extracted_content", sa.Text(), nullable=True),
        sa.Column("processing_status", sa.String(16), nullable=False, server_default="queued"),
        sa.Column("validation_status", sa.String(16), nullable=False, server_default="pending"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("uploaded_by", sa.String(64), nullable=True),
        sa.Column("medical_domain", sa.String(128), nullable=True),
        sa.Column("difficulty", sa.String(16), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["uploaded_by"], ["mp_users.id"]),
        sa.Index("ix_mp_knowledge_base_processing_status", "processing_status"),
    )

    # Seed default subject categories
    now = datetime.now(timezone.utc).replace(tzinfo=None)
    categories_table = sa.table(
        "mp_categories",
        sa.column("id", sa.String),
        sa.column("created_at", sa.DateTime),
        sa.column("updated_at", sa.DateTime),
        sa.column("title", sa.String),
        sa.column("slug", sa.String),
        sa.column("level", sa.String),
        sa.column("adaptive_settings", JSONB),
    )
    default_categories = [
        ("Anatomie", "anatomie"),
        ("Physiologie", "physiologie"),
        ("Biochimie", "biochimie"),
        ("Biologie cellulaire", "biologie-cellulaire"),
        ("Histologie", "histologie"),
        ("Biophysique", "biophysique"),
        ("Pharmacologie", "pharmacologie"),
        ("Santé publique", "sante-publique"),
    ]
    op.bulk_insert(
        categories_table,
        [
            {
                "id": uuid4().hex,
                "created_at": now,
                "updated_at": now,
                "title": title,
                "slug": slug,
                "level": "both",
                "adaptive_settings": {"isActive": True, "minimumQuestions": 5, "weight": 1},
            }
            for title, slug in default_categories
        ],
    )


def downgrade() -> None:
    """Drop all tables created in upgrade."""
    op.drop_table("mp_knowledge_base")
    op.drop_table("mp_audit_logs")
    op.drop_table("mp_webhook_retry_queue")
    op.drop_table("mp_prospects")
    op.drop_table("mp_subscriptions")
    op.drop_table("mp_user_performances")
    op.drop_table("mp_adaptive_quiz_results")
    op.drop_table("mp_adaptive_quiz_sessions")
    op.drop_table("mp_quiz_submissions")
    op.drop_table("mp_questions")
    op.drop_table("mp_quizzes")
    op.drop_table("mp_courses")
    op.drop_table("mp_categories")
    op.drop_table("mp_users")
    op.drop_table("mp_tenants")
