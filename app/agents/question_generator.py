from __future__ import annotations

from uuid import uuid4

from loguru import logger

from app.llm_client import get_model
from app.models.research import QuestionList
from app.models.schemas import Question
from app.services.env_safety import ConfigurationError
from app.services.model_gateway import ModelCallError, ModelGateway
from app.services.prompt_store import render_prompt

QUESTION_COUNT = 5


def fallback_questions(topic: str) -> list[str]:
    return [
        f"\"{topic}\"的主要发展历史是什么？",
        f"\"{topic}\"目前面临的最大挑战是什么？",
        f"\"{topic}\"的未来发展趋势如何？",
        f"\"{topic}\"在全球范围内的影响力如何？",
        f"如何评价\"{topic}\"的社会价值？",
    ]


async def generate_questions(topic: str, gateway: ModelGateway | None = None) -> list[Question]:
    """Clarifying questions for a topic; templated questions when the model fails."""
    gateway = gateway or ModelGateway()
    texts: list[str] = []
    try:
        result = await gateway.call(
            get_model("question"),
            render_prompt("questions.user", topic=topic, count=QUESTION_COUNT),
            render_prompt("questions.system"),
            QuestionList,
            activity_type="question",
            caller="question_generator",
        )
        texts = [q.strip() for q in result.questions if isinstance(q, str) and q.strip()]
    except (ModelCallError, ConfigurationError) as e:
        logger.warning(f"Question generation failed, using templated questions: {e}")

    if not texts:
        texts = fallback_questions(topic)
    logger.info(f"Generated {len(texts[:QUESTION_COUNT])} questions for topic: {topic[:80]}")
    return [Question(id=str(uuid4()), text=t) for t in texts[:QUESTION_COUNT]]
