"""Service for recording diner feedback."""

import uuid
from datetime import UTC, datetime

from table_order_service.models.order_models import Feedback
from table_order_service.repositories.order_repositories import FeedbackRepository


class FeedbackService:
    """Records star ratings and comments."""

    def __init__(self, feedback_repository: FeedbackRepository) -> None:
        self.feedback_repository = feedback_repository

    async def submit_feedback(self, rating: int, feedback: str = "") -> Feedback:
        """Store one piece of feedback.

        Raises:
            pydantic.ValidationError: If the rating is outside 1 to 5
            StorageError: If the write fails
        """
        entry = Feedback(
            id=str(uuid.uuid4()),
            rating=rating,
            feedback=feedback.strip(),
            created_at=datetime.now(UTC),
        )
        return await self.feedback_repository.save_feedback(entry)
