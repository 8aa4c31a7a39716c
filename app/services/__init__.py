"""Services package initialization."""
from app.services.call_repository import CallRepository, RepositoryUnavailable
from app.services.backoff import RateLimitBackoff
from app.services.outcome_publisher import (
    OutcomeEvent,
    OutcomePublisher,
    RedisOutcomePublisher,
    InMemoryOutcomePublisher,
)
from app.services.verification_evaluator import evaluate, EvaluationResult, Outcome, InvalidInput

__all__ = [
    "CallRepository",
    "RepositoryUnavailable",
    "RateLimitBackoff",
    "OutcomeEvent",
    "OutcomePublisher",
    "RedisOutcomePublisher",
    "InMemoryOutcomePublisher",
    "evaluate",
    "EvaluationResult",
    "Outcome",
    "InvalidInput"
]
