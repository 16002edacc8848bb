from __future__ import annotations

from pydantic import BaseModel, Field


# --- Requests ---


class Clarification(BaseModel):
    id: str
    text: str
    answer: str | None = None


class QuestionsRequest(BaseModel):
    topic: str = Field(min_length=2, max_length=200)


class DeepResearchRequest(BaseModel):
    topic: str = Field(min_length=2, max_length=200)
    clarifications: list[Clarification] = Field(default_factory=list)


# --- Responses ---


class Question(BaseModel):
    id: str
    text: str


class QuestionsResponse(BaseModel):
    questions: list[Question]


class ModelInfo(BaseModel):
    stage: str
    id: str


class ModelsResponse(BaseModel):
    models: list[ModelInfo]
