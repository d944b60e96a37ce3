"""Research task aggregate and the structured stage outputs it accumulates.

All models serialize with camelCase aliases (``clarifiedScope``,
``batchAnalyses``, ...) and accept either casing on input.
"""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _wrap_strings(values: Any, key: str) -> Any:
    """Accept bare strings where a list of objects is expected."""
    if isinstance(values, list):
        return [{key: v} if isinstance(v, str) else v for v in values]
    return values


class TaskStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class ChatMessage(CamelModel):
    role: Literal["system", "assistant", "user"]
    content: str


# --- Plan ---


class SubQuestion(CamelModel):
    id: str = Field(min_length=1)
    question: str = Field(min_length=1)
    rationale: str = ""
    priority: Literal["high", "medium", "low"] = "medium"

    @field_validator("priority", mode="before")
    @classmethod
    def _normalize_priority(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().lower()
        return value


class DataSource(CamelModel):
    id: str = ""
    type: str = "other"
    name: str = ""
    intended_use: str = ""


class CollectionStrategy(CamelModel):
    approach: str = ""
    sampling_guidelines: str = ""
    filters: str = ""


class AnalysisFocus(CamelModel):
    resonance_signals: list[str] = Field(default_factory=list)
    dimensions: list[str] = Field(default_factory=list)
    expected_deliverables: list[str] = Field(default_factory=list)


class ResearchPlan(CamelModel):
    plan_summary: str
    sub_questions: list[SubQuestion]
    data_sources: list[DataSource] = Field(default_factory=list)
    collection_strategy: CollectionStrategy = Field(default_factory=CollectionStrategy)
    analysis_focus: AnalysisFocus = Field(default_factory=AnalysisFocus)

    @field_validator("data_sources", mode="before")
    @classmethod
    def _coerce_sources(cls, value: Any) -> Any:
        return _wrap_strings(value, "name")

    @field_validator("collection_strategy", mode="before")
    @classmethod
    def _coerce_strategy(cls, value: Any) -> Any:
        if isinstance(value, str):
            return {"approach": value}
        return value

    @field_validator("analysis_focus", mode="before")
    @classmethod
    def _coerce_focus(cls, value: Any) -> Any:
        if isinstance(value, str):
            return {"dimensions": [value]}
        return value

    @model_validator(mode="after")
    def _check_sub_questions(self) -> "ResearchPlan":
        if not self.sub_questions:
            raise ValueError("plan must contain at least one sub-question")
        seen: set[str] = set()
        for sub_question in self.sub_questions:
            if sub_question.id in seen:
                raise ValueError(f"duplicate sub-question id: {sub_question.id}")
            seen.add(sub_question.id)
        return self

    @property
    def sub_question_ids(self) -> list[str]:
        return [sq.id for sq in self.sub_questions]


# --- Batch analysis ---


class EvidenceQuote(CamelModel):
    snippet_id: str = ""
    quote: str = ""


class Pattern(CamelModel):
    pattern: str
    evidence_snippets: list[EvidenceQuote] = Field(default_factory=list)
    implication: str = ""

    @field_validator("evidence_snippets", mode="before")
    @classmethod
    def _coerce_quotes(cls, value: Any) -> Any:
        return _wrap_strings(value, "quote")


class ResonantElements(CamelModel):
    hooks: list[str] = Field(default_factory=list)
    phrases: list[str] = Field(default_factory=list)
    formats: list[str] = Field(default_factory=list)
    emotional_tones: list[str] = Field(default_factory=list)


class ThemeExample(CamelModel):
    theme: str
    example: str = ""


class BatchAnalysis(CamelModel):
    """Analysis of one sub-question.

    Every top-level section must be present, even if empty; nested entries
    may omit their optional text fields.
    """

    sub_question_id: str
    insight_summary: str
    patterns: list[Pattern]
    resonant_elements: ResonantElements
    objections_and_fears: list[ThemeExample]
    desires_and_outcomes: list[ThemeExample]
    degraded: bool = False
    failure_reason: str | None = None
    snippet_count: int = 0

    @field_validator("objections_and_fears", "desires_and_outcomes", mode="before")
    @classmethod
    def _coerce_themes(cls, value: Any) -> Any:
        return _wrap_strings(value, "theme")

    @classmethod
    def placeholder(cls, sub_question_id: str, reason: str, *, snippet_count: int = 0) -> "BatchAnalysis":
        """Degraded entry stored when a sub-question could not be analyzed."""
        return cls(
            sub_question_id=sub_question_id,
            insight_summary=f"Analysis unavailable for this sub-question: {reason}",
            patterns=[],
            resonant_elements=ResonantElements(),
            objections_and_fears=[],
            desires_and_outcomes=[],
            degraded=True,
            failure_reason=reason,
            snippet_count=snippet_count,
        )


# --- Final report ---


class AudienceSnapshot(CamelModel):
    who_they_are: str = ""
    key_motivations: list[str] = Field(default_factory=list)
    key_frustrations: list[str] = Field(default_factory=list)


class ResonanceFinding(CamelModel):
    theme: str
    description: str = ""
    supporting_evidence: list[str] = Field(default_factory=list)
    implications: list[str] = Field(default_factory=list)


class PlatformInsight(CamelModel):
    platform: str
    what_works: list[str] = Field(default_factory=list)
    what_to_avoid: list[str] = Field(default_factory=list)
    example_angles: list[str] = Field(default_factory=list)


class ChannelAndFormatInsights(CamelModel):
    by_platform: list[PlatformInsight] = Field(default_factory=list)
    cross_platform_patterns: list[str] = Field(default_factory=list)


class MessagingRecommendations(CamelModel):
    core_narratives: list[str] = Field(default_factory=list)
    recommended_hooks: list[str] = Field(default_factory=list)
    language_to_use: list[str] = Field(default_factory=list)
    language_to_avoid: list[str] = Field(default_factory=list)


class ObjectionResponse(CamelModel):
    objection: str
    context: str = ""
    recommended_response_angle: str = ""


class FinalReport(CamelModel):
    # coverage_notes is filled in by the engine, never required from the model.
    executive_summary: str = Field(min_length=1)
    audience_snapshot: AudienceSnapshot
    resonance_findings: list[ResonanceFinding]
    channel_and_format_insights: ChannelAndFormatInsights
    messaging_recommendations: MessagingRecommendations
    objections_and_responses: list[ObjectionResponse]
    next_steps: list[str]
    coverage_notes: list[str] = Field(default_factory=list)


# --- Aggregate root ---


class ResearchTask(CamelModel):
    """One research request and everything accumulated for it.

    ``version`` is the optimistic-write token: every committed mutation
    increments it, and stores only apply a write whose expected version
    matches the stored one.
    """

    id: str = Field(default_factory=lambda: str(uuid4()))
    owner_id: str
    title: str
    description: str
    clarified_scope: str
    parameters: dict[str, Any] = Field(default_factory=dict)
    messages: list[ChatMessage] = Field(default_factory=list)
    status: TaskStatus = TaskStatus.RUNNING
    plan: ResearchPlan | None = None
    batch_analyses: dict[str, BatchAnalysis] = Field(default_factory=dict)
    final_report: FinalReport | None = None
    result_summary: str | None = None
    error_message: str | None = None
    progress: int = 0
    version: int = 1
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.status != TaskStatus.RUNNING

    @property
    def pending_sub_question_ids(self) -> list[str]:
        """Plan sub-question ids without an analysis yet, in plan order."""
        if self.plan is None:
            return []
        return [sid for sid in self.plan.sub_question_ids if sid not in self.batch_analyses]

    def snapshot(self) -> dict[str, Any]:
        """JSON-ready payload returned to clients."""
        return self.model_dump(mode="json", by_alias=True)


# The orchestrator hands out immutable copies of the stored aggregate.
TaskSnapshot = ResearchTask
