import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from form_agent.fallback import (  # noqa: E402
    FallbackAction,
    fallback_for,
    is_usable,
    prepare_sequential_answers,
    sequence_default,
)
from form_agent.models import FieldAnswer, FieldKind, FieldRequest, SequentialQuestion  # noqa: E402


def _request(kind: FieldKind, mandatory: bool = True, options=None) -> FieldRequest:
    return FieldRequest(identifier="Field", kind=kind, is_mandatory=mandatory, options=options or [])


def test_mandatory_text_writes_literal():
    decision = fallback_for(_request(FieldKind.TEXT))
    assert decision.action is FallbackAction.WRITE_TEXT
    assert decision.answer.value == "n/a"


def test_mandatory_choices_take_first_option():
    single = fallback_for(_request(FieldKind.SINGLE_CHOICE, options=["A", "B"]))
    multi = fallback_for(_request(FieldKind.MULTI_CHOICE, options=["X", "Y"]))
    assert (single.action, single.answer.value) == (FallbackAction.SELECT_FIRST, "A")
    assert (multi.action, multi.answer.value) == (FallbackAction.SELECT_FIRST, ["X"])


def test_mandatory_choice_without_options_is_unresolvable():
    decision = fallback_for(_request(FieldKind.SINGLE_CHOICE))
    assert decision.action is FallbackAction.UNRESOLVABLE
    assert decision.answer is None


def test_mandatory_boolean_toggles_true():
    decision = fallback_for(_request(FieldKind.BOOLEAN))
    assert decision.action is FallbackAction.TOGGLE
    assert decision.answer.value is True


def test_optional_fields_stay_null():
    for kind in FieldKind:
        assert fallback_for(_request(kind, mandatory=False, options=["A"])).action is FallbackAction.LEAVE_NULL


def test_is_usable_rejects_false_for_mandatory_boolean_and_kind_mismatch():
    mandatory_box = _request(FieldKind.BOOLEAN)
    optional_box = _request(FieldKind.BOOLEAN, mandatory=False)
    assert not is_usable(mandatory_box, FieldAnswer(kind=FieldKind.BOOLEAN, value=False))
    assert is_usable(optional_box, FieldAnswer(kind=FieldKind.BOOLEAN, value=False))
    assert not is_usable(_request(FieldKind.TEXT), FieldAnswer(kind=FieldKind.BOOLEAN, value=True))
    assert not is_usable(_request(FieldKind.TEXT), None)


def test_sequence_defaults_follow_mandatory_flag():
    def question(kind: str, required: bool) -> SequentialQuestion:
        return SequentialQuestion(id=kind, label=kind, question_type=kind, options=["One", "Two"], required=required)

    assert sequence_default(question("agree-check", True)) is True
    assert sequence_default(question("dropdown", True)) == "One"
    assert sequence_default(question("multiselect", True)) == ["One"]
    assert sequence_default(question("text", True)) == "N/A"
    assert sequence_default(question("agree-check", False)) is False
    assert sequence_default(question("multiselect", False)) == []
    assert sequence_default(question("text", False)) == "N/A"


def test_prepare_sequential_answers_fills_gaps_and_rejects_mismatch():
    questions = [
        SequentialQuestion(id="q1", label="Company", question_type="text", required=True),
        SequentialQuestion(id="q2", label="Terms", question_type="terms", required=True),
    ]
    prepared = prepare_sequential_answers(questions, ["Acme", None])
    assert [answer.answer for answer in prepared] == ["Acme", True]
    assert prepared[0].question_id == "q1"

    defaults = prepare_sequential_answers(questions, ["only one"])
    assert [answer.answer for answer in defaults] == ["N/A", True]
