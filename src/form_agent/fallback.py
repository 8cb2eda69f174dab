"""Deterministic defaults for fields the oracle left without a usable answer."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, List, Optional, Sequence

from .config import FALLBACK_TEXT
from .models import AnswerValue, FieldAnswer, FieldKind, FieldRequest, SequentialAnswer, SequentialQuestion

logger = logging.getLogger(__name__)

SEQUENCE_FALLBACK_TEXT = "N/A"


class FallbackAction(str, Enum):
    WRITE_TEXT = "write_text"
    SELECT_FIRST = "select_first"
    TOGGLE = "toggle"
    LEAVE_NULL = "leave_null"
    UNRESOLVABLE = "unresolvable"


@dataclass
class FallbackDecision:
    action: FallbackAction
    answer: Optional[FieldAnswer] = None


def fallback_for(request: FieldRequest, fallback_text: str = FALLBACK_TEXT) -> FallbackDecision:
    """Kind- and mandatory-aware default for one field.

    | kind          | mandatory | decision                                   |
    |---------------|-----------|--------------------------------------------|
    | boolean       | yes       | toggle (terms sub-flow on failure)         |
    | single/multi  | yes       | first recorded option, unresolvable if none|
    | text          | yes       | the fixed fallback literal                 |
    | any           | no        | leave null                                 |
    """
    if not request.is_mandatory:
        return FallbackDecision(FallbackAction.LEAVE_NULL)

    kind = request.kind
    if kind is FieldKind.BOOLEAN:
        return FallbackDecision(FallbackAction.TOGGLE, FieldAnswer(kind=kind, value=True))
    if kind.is_choice:
        if not request.options:
            logger.warning("Mandatory %s field '%s' has no options to fall back to", kind.value, request.identifier)
            return FallbackDecision(FallbackAction.UNRESOLVABLE)
        first = request.options[0]
        value: AnswerValue = [first] if kind is FieldKind.MULTI_CHOICE else first
        return FallbackDecision(FallbackAction.SELECT_FIRST, FieldAnswer(kind=kind, value=value))
    return FallbackDecision(FallbackAction.WRITE_TEXT, FieldAnswer(kind=kind, value=fallback_text))


def is_usable(request: FieldRequest, answer: Optional[FieldAnswer]) -> bool:
    """A decoded answer is usable when it fits the field; a mandatory box answered False is not."""
    if answer is None or answer.kind is not request.kind:
        return False
    if request.kind is FieldKind.BOOLEAN and request.is_mandatory and answer.value is not True:
        return False
    return True


def sequence_default(question: SequentialQuestion) -> AnswerValue:
    """Default answer for the ordered question mode when the oracle gave none."""
    if question.required:
        if question.is_terms:
            return True
        if question.is_single_choice and question.options:
            return question.options[0]
        if question.is_multi_choice and question.options:
            return [question.options[0]]
        return SEQUENCE_FALLBACK_TEXT
    if question.is_terms:
        return False
    if question.is_multi_choice:
        return []
    return SEQUENCE_FALLBACK_TEXT


def prepare_sequential_answers(
    questions: Sequence[SequentialQuestion],
    answers: Optional[Sequence[Any]],
) -> List[SequentialAnswer]:
    """Pair ordered oracle answers with their questions, defaulting gaps.

    A missing or mismatched answer list falls back to defaults for every question.
    """
    if answers is not None and len(answers) != len(questions):
        logger.warning("Answer count %s does not match %s questions; using defaults", len(answers), len(questions))
        answers = None

    prepared: List[SequentialAnswer] = []
    for idx, question in enumerate(questions):
        raw = answers[idx] if answers is not None else None
        value: AnswerValue
        if isinstance(raw, (str, bool)) or (isinstance(raw, list) and all(isinstance(item, str) for item in raw)):
            value = raw
        else:
            if answers is not None:
                logger.info("No usable answer for question %s (%r); applying default", idx, question.label)
            value = sequence_default(question)
        prepared.append(
            SequentialAnswer(
                question_id=question.id,
                question_type=question.question_type,
                label=question.label,
                answer=value,
            )
        )
    return prepared
