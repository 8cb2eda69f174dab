"""Core data models for the form agent."""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

AnswerValue = Union[str, List[str], bool]
ResolutionResult = Dict[str, Optional[AnswerValue]]


class FieldKind(str, Enum):
    TEXT = "text"
    SINGLE_CHOICE = "single_choice"
    MULTI_CHOICE = "multi_choice"
    BOOLEAN = "boolean"

    @property
    def is_choice(self) -> bool:
        return self in (FieldKind.SINGLE_CHOICE, FieldKind.MULTI_CHOICE)


class FieldRequest(BaseModel):
    """One discovered form control.

    ``identifier`` and ``kind`` never change after discovery. ``element`` is the
    backend handle captured during discovery and must be treated as stale after
    any suspension point unless ``is_direct_trigger`` is set.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    identifier: str
    kind: FieldKind
    options: List[str] = Field(default_factory=list)
    is_mandatory: bool = False
    is_direct_trigger: bool = False
    element: Any = Field(default=None, exclude=True, repr=False)
    click_target: Any = Field(default=None, exclude=True, repr=False)
    name: Optional[str] = None
    raw_label: Optional[str] = None

    def with_options(self, options: List[str]) -> "FieldRequest":
        return self.model_copy(update={"options": list(options)})

    def describe(self) -> str:
        """Single prompt line describing the field to the oracle."""
        desc = f'Field: "{self.identifier}"'
        if self.is_mandatory:
            desc += " (Mandatory *)"
        desc += f" (Type: {self.kind.value})"
        if self.options:
            desc += ", Options: [" + ", ".join(self.options) + "]"
        if self.kind is FieldKind.MULTI_CHOICE:
            desc += " (Allow multiple selections)"
        return desc


class FieldAnswer(BaseModel):
    """Validated oracle answer, tagged with the kind it was decoded for."""

    kind: FieldKind
    value: AnswerValue


class ResolutionSource(str, Enum):
    PREFILLED = "prefilled"
    PROFILE = "profile"
    ORACLE = "oracle"
    FALLBACK = "fallback"
    UNRESOLVED = "unresolved"
    SKIPPED = "skipped"


class FieldResolution(BaseModel):
    """Per-field record threaded through discovery, oracle, fallback and commit."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    request: FieldRequest
    answer: Optional[FieldAnswer] = None
    source: ResolutionSource = ResolutionSource.UNRESOLVED
    committed: bool = False
    value: Optional[AnswerValue] = None
    error: Optional[str] = None

    @property
    def identifier(self) -> str:
        return self.request.identifier

    @property
    def is_satisfied(self) -> bool:
        if self.request.is_mandatory:
            return self.committed and self.value is not None
        return self.source is not ResolutionSource.UNRESOLVED

    def settle(self, source: ResolutionSource, value: Optional[AnswerValue], committed: bool = True) -> None:
        self.source = source
        self.value = value
        self.committed = committed
        if committed:
            self.error = None

    def fail(self, error: str) -> None:
        self.source = ResolutionSource.UNRESOLVED
        self.committed = False
        self.value = None
        self.error = error

    def summary(self) -> Dict[str, Any]:
        return {
            "identifier": self.identifier,
            "kind": self.request.kind.value,
            "mandatory": self.request.is_mandatory,
            "source": self.source.value,
            "committed": self.committed,
            "value": self.value,
            "error": self.error,
        }


class FormOutcome(BaseModel):
    success: bool
    results: Optional[ResolutionResult] = None
    resolutions: List[FieldResolution] = Field(default_factory=list)
    failure: Optional[str] = None


class SequentialQuestion(BaseModel):
    """Question shape for the ordered, one-answer-per-question oracle mode."""

    id: str
    label: str
    question_type: str
    options: List[str] = Field(default_factory=list)
    required: bool = False

    @property
    def is_terms(self) -> bool:
        return self.question_type in ("agree-check", "terms")

    @property
    def is_single_choice(self) -> bool:
        return self.question_type in ("dropdown", "select")

    @property
    def is_multi_choice(self) -> bool:
        return self.question_type in ("multiselect", "multi-select")


class SequentialAnswer(BaseModel):
    question_id: str
    question_type: str
    label: str
    answer: AnswerValue
