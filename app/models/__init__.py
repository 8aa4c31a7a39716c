"""Models package initialization."""
from app.models.token_call import (
    TokenCall,
    CallStatus,
    TERMINAL_STATUSES,
    CHECKABLE_STATUSES,
)

__all__ = [
    "TokenCall",
    "CallStatus",
    "TERMINAL_STATUSES",
    "CHECKABLE_STATUSES",
]
