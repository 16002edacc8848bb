from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, Field

from app.models.events import Report, WireModel


@dataclass
class Document:
    """Normalized search result, independent of the provider."""

    id: str
    title: str
    url: str
    text: str
    score: float = 0.0
    published_date: str | None = None
    author: str | None = None
    source: str | None = None


# --- Model output shapes (validated by the model gateway) ---


class PlanningResult(BaseModel):
    queries: list[str] = Field(default_factory=list)


class Finding(BaseModel):
    fact: str = ""
    source: str = ""
    confidence: float | None = None


class ExtractionResult(BaseModel):
    findings: list[Finding] = Field(default_factory=list)


class AnalysisResult(WireModel):
    is_complete: bool = False
    gaps: list[str] = Field(default_factory=list)
    additional_queries: list[str] = Field(default_factory=list)


class QuestionList(BaseModel):
    questions: list[str] = Field(default_factory=list)


# --- Per-request state ---


@dataclass
class UsageCounter:
    """Token/step bookkeeping for one request; best-effort, not billing."""

    tokens_used: int = 0
    completed_steps: int = 0

    def record(self, total_tokens: int) -> None:
        self.tokens_used += max(int(total_tokens or 0), 0)
        self.completed_steps += 1


@dataclass
class QuestionResult:
    question: str
    findings: list[Finding] = field(default_factory=list)
    analysis: AnalysisResult = field(default_factory=AnalysisResult)
    iterations: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "question": self.question,
            "findings": [f.model_dump(exclude_none=True) for f in self.findings],
            "analysis": self.analysis.model_dump(by_alias=True),
        }


@dataclass
class ResearchState:
    """Everything one research request owns; discarded with the response."""

    topic: str
    questions: list[str] = field(default_factory=list)
    queries: list[str] = field(default_factory=list)
    documents: list[Document] = field(default_factory=list)
    results: list[QuestionResult] = field(default_factory=list)
    report: Report | None = None
    usage: UsageCounter = field(default_factory=UsageCounter)
