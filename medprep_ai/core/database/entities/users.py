"""
User and tenant entity models.

Users carry the student profile used by adaptive quizzes (study year,
level, university) and the subscription fields kept in sync with Stripe.
Tenants group users of one institution.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from sqlmodel import JSON, Field

from ..base import DocumentBase


class UserRole(str, Enum):
    SUPERADMIN = "superadmin"
    ADMIN = "admin"
    TEACHER = "teacher"
    STUDENT = "student"


class StudyYear(str, Enum):
    PASS = "pass"
    LAS = "las"


class SubscriptionStatus(str, Enum):
    """Subscription state mirrored on the user record."""

    NONE = "none"
    TRIALING = "trialing"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"


class TenantStatus(str, Enum):
    ACTIVE = "active"
    SUSPENDED = "suspended"
    ARCHIVED = "archived"


class Tenant(DocumentBase, table=True):
    """Institution owning a group of users.

    Table: mp_tenants
    """

    __tablename__ = "mp_tenants"
    __audit_collection__ = "tenants"

    name: str = Field(max_length=255)
    slug: str = Field(max_length=128, unique=True, index=True)
    status: str = Field(default=TenantStatus.ACTIVE.value, max_length=32)
    contact_email: Optional[str] = Field(default=None, max_length=255)
    quotas: Dict[str, Any] = Field(default_factory=dict, sa_type=JSON)
    usage: Dict[str, Any] = Field(default_factory=dict, sa_type=JSON)

    def __repr__(self) -> str:
        return f"Tenant(id={self.id}, slug={self.slug}, status={self.status})"


class User(DocumentBase, table=True):
    """Platform account.

    ``study_year`` (``pass``/``las``) gates adaptive quizzes, while
    ``student_level`` (``PASS``/``LAS``) filters the question bank.

    Table: mp_users
    """

    __tablename__ = "mp_users"
    __audit_collection__ = "users"

    email: str = Field(max_length=255, unique=True, index=True)
    name: Optional[str] = Field(default=None, max_length=255)
    first_name: Optional[str] = Field(default=None, max_length=128)
    last_name: Optional[str] = Field(default=None, max_length=128)
    role: str = Field(default=UserRole.STUDENT.value, max_length=32, index=True)

    # Student profile
    study_year: Optional[str] = Field(default=None, max_length=16)
    student_level: Optional[str] = Field(default=None, max_length=16)
    university: Optional[str] = Field(default=None, max_length=255)
    specialization: Optional[str] = Field(default=None, max_length=255)

    # Billing state synced from Stripe
    subscription_status: str = Field(default=SubscriptionStatus.NONE.value, max_length=32)
    subscription_end_date: Optional[datetime] = Field(default=None)

    tenant_id: Optional[str] = Field(default=None, foreign_key="mp_tenants.id", max_length=64, index=True)

    @property
    def is_admin(self) -> bool:
        return self.role in (UserRole.ADMIN.value, UserRole.SUPERADMIN.value)

    def __repr__(self) -> str:
        return f"User(id={self.id}, email={self.email}, role={self.role})"
