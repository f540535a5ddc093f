from app.db.models.attempt_questions import AttemptQuestion
from app.db.models.document_chunks import DocumentChunk
from app.db.models.mcq_items import McqItem
from app.db.models.user_attempts import UserAttempt

__all__ = [
    "AttemptQuestion",
    "DocumentChunk",
    "McqItem",
    "UserAttempt",
]
