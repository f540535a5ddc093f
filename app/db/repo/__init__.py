from app.db.repo.attempt_questions_repo import AttemptQuestionsRepo
from app.db.repo.document_chunks_repo import DocumentChunksRepo
from app.db.repo.mcq_items_repo import McqItemsRepo
from app.db.repo.user_attempts_repo import UserAttemptsRepo

__all__ = [
    "AttemptQuestionsRepo",
    "DocumentChunksRepo",
    "McqItemsRepo",
    "UserAttemptsRepo",
]
