"""
Database entity models.

This package contains all database entity models organized by business domain
and table relationships. Each module represents either:

1. A single database table and its related logic
2. A business domain that spans multiple related tables

Modules:
- users: Tenants and platform accounts with student profile and billing state
- courses: Subject categories and courses
- quizzes: Quizzes, multiple-choice questions and graded submissions
- adaptive_quiz: Adaptive sessions, their results and performance snapshots
- subscriptions: Stripe subscriptions, checkout prospects and webhook retries
- audit_logs: Data change and error audit trail
- knowledge_base: Uploaded reference documents
"""

from . import (
    adaptive_quiz,
    audit_logs,
    courses,
    knowledge_base,
    quizzes,
    subscriptions,
    users,
)

__all__ = [
    "adaptive_quiz",
    "audit_logs",
    "courses",
    "knowledge_base",
    "quizzes",
    "subscriptions",
    "users",
]
