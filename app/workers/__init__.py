"""Workers package initialization."""
from app.workers.verification_worker import VerificationWorker, TickReport, CallResult

__all__ = ["VerificationWorker", "TickReport", "CallResult"]
