from __future__ import annotations

from fastapi import APIRouter

from app.agents.question_generator import generate_questions
from app.models.schemas import QuestionsRequest, QuestionsResponse

router = APIRouter(prefix="/api", tags=["questions"])


@router.post("/generate-questions", response_model=QuestionsResponse)
async def create_questions(request: QuestionsRequest):
    """Clarifying questions to ask before researching a topic."""
    questions = await generate_questions(request.topic)
    return QuestionsResponse(questions=questions)
