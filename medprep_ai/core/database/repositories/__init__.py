"""
Database repository layer using SQLModel.

This package contains all repository classes organized by business domain
and table relationships. Each module provides type-safe data access operations
for its corresponding SQLModel entity models.

All repositories are built on SQLModel for:
- Type-safe ORM operations with Pydantic validation
- Async-first database access patterns
- Consistent CRUD interface via AsyncBaseRepository
- Query building utilities for filtering and pagination

Modules:
- base: AsyncBaseRepository interface, default implementation and QueryBuilder
- users: User lookups
- courses: Category repository operations
- quizzes: Quiz, question bank and submission repository operations
- adaptive_quiz: Adaptive session, result and performance snapshot operations
- subscriptions: Subscription, prospect and webhook retry queue operations
- audit_logs: Audit trail repository operations
- knowledge_base: Uploaded document repository operations
"""

from .adaptive_quiz import (
    AdaptiveQuizResultRepository,
    AdaptiveQuizSessionRepository,
    UserPerformanceRepository,
)
from .audit_logs import AuditLogRepository
from .courses import CategoryRepository
from .knowledge_base import KnowledgeBaseRepository
from .quizzes import QuestionRepository, QuizRepository, QuizSubmissionRepository
from .subscriptions import (
    ProspectRepository,
    SubscriptionRepository,
    WebhookRetryQueueRepository,
)
from .users import UserRepository

__all__ = [
    "AdaptiveQuizResultRepository",
    "AdaptiveQuizSessionRepository",
    "AuditLogRepository",
    "CategoryRepository",
    "KnowledgeBaseRepository",
    "ProspectRepository",
    "QuestionRepository",
    "QuizRepository",
    "QuizSubmissionRepository",
    "SubscriptionRepository",
    "UserPerformanceRepository",
    "UserRepository",
    "WebhookRetryQueueRepository",
]
