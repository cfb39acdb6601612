"""MedPrep AI.

Backend of a medical exam preparation platform for PASS and LAS students.

Core subpackages
----------------

- ``medprep_ai.core``:

  - Logging and Logfire monitoring.
  - The database layer: SQLModel entities and async repositories.

- ``medprep_ai.server``:

  - The FastAPI application and its REST API under ``/api``.
  - Lifecycle hooks (audit trail, adaptive quiz rate limits, subscription
    to user synchronisation).
  - Services: adaptive quizzes, performance analytics, AI quiz generation,
    quiz submissions, knowledge base uploads and Stripe billing.

Typical workflow
----------------

1. A student answers regular quizzes; each submission feeds the analytics.
2. Once enough quizzes are scored, the student generates adaptive quizzes
   targeting weak categories, within a daily limit and a cooldown.
3. Adaptive results produce per-category scores, recommendations and a
   progress comparison.
4. Access is granted by a Stripe subscription kept in sync through webhooks.
"""
