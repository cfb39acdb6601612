"""
API Schemas.

This module contains Pydantic models used for API request bodies. Field names
follow the camelCase contract of the web client.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class QuizAnswer(BaseModel):
    """One answered question of a classic quiz."""

    question: str = Field(..., description="Identifier of the answered question.", examples=["q-1"])
    answer: str = Field(..., description="Identifier of the chosen option.", examples=["opt-2"])


class QuizSubmit(BaseModel):
    """
    Schema for submitting the answers of a classic quiz.

    ``answers`` is optional so that an empty body gets the submission error
    message instead of a generic validation error.
    """

    answers: Optional[List[QuizAnswer]] = Field(
        default=None,
        description="The student's answers, one per question.",
    )

    model_config = ConfigDict(json_schema_extra={
        "example": {"answers": [{"question": "q-1", "answer": "opt-2"}]}
    })


class AdaptiveSessionCreate(BaseModel):
    """
    Schema for opening an adaptive quiz session from an explicit question list.
    """

    questions: Optional[List[str]] = Field(
        default=None,
        description="Question identifiers of the session, in display order.",
    )
    basedOnAnalytics: Dict[str, Any] = Field(default_factory=dict, description="Analytics snapshot used.")
    questionDistribution: Dict[str, Any] = Field(default_factory=dict, description="Weak/strong question split.")
    config: Dict[str, Any] = Field(default_factory=dict, description="Generation parameters.")
    studentLevel: Optional[str] = Field(default=None, description="PASS or LAS, PASS when omitted.")
    expiresAt: Optional[datetime] = Field(default=None, description="ISO expiry, 24 hours from now when omitted.")


class AdaptiveResultSave(BaseModel):
    """
    Schema for storing a result computed by the client.
    """

    sessionId: Optional[str] = Field(default=None, description="Public identifier of the completed session.")
    overallScore: Optional[float] = Field(default=None)
    maxScore: Optional[float] = Field(default=None)
    successRate: Optional[float] = Field(default=None)
    timeSpent: Optional[int] = Field(default=None, description="Seconds spent, ignored when totalTimeMs is set.")
    totalTimeMs: Optional[float] = Field(default=None, description="Milliseconds spent.")
    categoryResults: List[Dict[str, Any]] = Field(default_factory=list)
    recommendations: List[Dict[str, Any]] = Field(default_factory=list)
    progressComparison: Dict[str, Any] = Field(default_factory=dict)
    improvementAreas: List[Any] = Field(default_factory=list)
    strengthAreas: List[Any] = Field(default_factory=list)


class AdaptiveSessionSubmit(BaseModel):
    """
    Schema for submitting the answers of an adaptive session for scoring.
    """

    answers: Dict[str, Union[str, List[str]]] = Field(
        default_factory=dict,
        description="Chosen option id, or ids for multi-answer questions, per question id.",
        examples=[{"q-1": "opt-2", "q-2": ["opt-1", "opt-3"]}],
    )
    timeSpent: int = Field(default=0, ge=0, description="Seconds spent answering.")


class CheckoutRequest(BaseModel):
    """
    Schema for starting a Stripe checkout.

    Either an existing ``prospectId`` or an ``email`` registering a new
    prospect is required.
    """

    prospectId: Optional[str] = Field(default=None, description="Existing prospect.")
    email: Optional[str] = Field(default=None, description="Email of a new prospect.")
    firstName: Optional[str] = Field(default=None)
    lastName: Optional[str] = Field(default=None)
    billingCycle: str = Field(default="monthly", description="monthly or yearly.", examples=["monthly"])
    priceId: Optional[str] = Field(default=None, description="Explicit Stripe price, overriding billingCycle.")
    utmSource: Optional[str] = Field(default=None)
    utmMedium: Optional[str] = Field(default=None)
    utmCampaign: Optional[str] = Field(default=None)


class VerifySessionRequest(BaseModel):
    """Schema for verifying a completed Checkout Session."""

    sessionId: Optional[str] = Field(default=None, description="Stripe Checkout Session id.", examples=["cs_test_123"])


class AIQuizGenerationConfig(BaseModel):
    """
    Schema for an AI quiz generation request.

    Unknown keys are kept so that the validation service reports on exactly
    what the client sent.
    """

    subject: Optional[str] = Field(default=None, description="Medical subject of the quiz.")
    categoryId: Optional[str] = Field(default=None, description="Category the questions belong to.")
    courseId: Optional[str] = Field(default=None, description="Optional course the quiz is attached to.")
    studentLevel: Optional[str] = Field(default=None, description="PASS, LAS or both.")
    questionCount: Optional[int] = Field(default=None, description="Number of questions, 5 to 20.")
    difficulty: Optional[str] = Field(default=None, description="easy, medium or hard.")
    includeExplanations: Optional[bool] = Field(default=None)
    customInstructions: Optional[str] = Field(default=None)
    medicalDomain: Optional[str] = Field(default=None)

    model_config = ConfigDict(
        extra="allow",
        json_schema_extra={
            "example": {
                "subject": "Physiologie cardiaque et cycle cardiaque",
                "categoryId": "cat-1",
                "studentLevel": "PASS",
                "questionCount": 10,
                "difficulty": "medium",
            }
        },
    )

    def to_config(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)
