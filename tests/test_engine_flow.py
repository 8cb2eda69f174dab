from __future__ import annotations

import asyncio
import json
import sys
from pathlib import Path
from types import SimpleNamespace
from typing import List

import pytest
from bs4 import BeautifulSoup

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from fake_page import FakePage  # noqa: E402
from form_agent.diagnostics import OutcomeLog  # noqa: E402
from form_agent.engine import FormResolver, answer_questions  # noqa: E402
from form_agent.models import ResolutionSource, SequentialQuestion  # noqa: E402
from form_agent.oracle import OracleClient  # noqa: E402
from form_agent.profile import ProfileStore  # noqa: E402
from form_agent.runner import answer_question_file, register_on_page  # noqa: E402


class _Completions:
    def __init__(self, replies: List[object]) -> None:
        self.replies = list(replies)
        self.calls: List[dict] = []

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        reply = self.replies.pop(0) if self.replies else asyncio.TimeoutError()
        if isinstance(reply, BaseException):
            raise reply
        return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=reply))])


async def _no_sleep(delay: float) -> None:
    return None


def _oracle(*replies: object) -> OracleClient:
    client = SimpleNamespace(chat=SimpleNamespace(completions=_Completions(list(replies))))
    return OracleClient(client, sleep=_no_sleep)


def _timeout_oracle() -> OracleClient:
    return _oracle()


def _prompt(oracle: OracleClient) -> str:
    return oracle.client.chat.completions.calls[0]["messages"][-1]["content"]


SUBMIT = '<div class="lux-collapse shown"><button id="submit" data-closes="form">Submit</button></div>'

BASIC_FORM = f"""
<div class="lux-overlay glass" id="form">
  <div><label for="f1">field1 *</label><input id="f1" type="text"></div>
  <div><label for="f2">field2</label><input id="f2" type="text"></div>
  <div><label for="choice">choice *</label>
    <select id="choice"><option>Option1</option><option>Option2</option><option>Option3</option></select>
  </div>
  {SUBMIT}
</div>
"""


@pytest.mark.asyncio
async def test_end_to_end_profile_oracle_and_fallback(tmp_path):
    page = FakePage(BASIC_FORM)
    oracle = _oracle('{"field1":"NULL","field2":"<ignored>","choice":"Option2"}')
    log = OutcomeLog(tmp_path / "outcomes.jsonl")
    resolver = FormResolver(page, oracle, ProfileStore({"field2": "Acme Corp"}), outcome_log=log)

    outcome = await resolver.process()
    log.close()

    assert outcome.success is True
    assert outcome.results == {"field1": "n/a", "field2": "Acme Corp", "choice": "Option2"}
    assert page.fills == {"f2": "Acme Corp", "f1": "n/a"}
    assert page.selections["choice"] == ["Option2"]
    assert page.clicks[-1].get("id") == "submit"

    prompt = _prompt(oracle)
    assert 'Field: "field1" (Mandatory *)' in prompt
    assert 'Field: "field2"' not in prompt

    sources = {res.identifier: res.source for res in outcome.resolutions}
    assert sources == {
        "field1": ResolutionSource.FALLBACK,
        "field2": ResolutionSource.PROFILE,
        "choice": ResolutionSource.ORACLE,
    }
    events = [json.loads(line) for line in (tmp_path / "outcomes.jsonl").read_text().splitlines()]
    assert events[-1]["event"] == "form_outcome"
    assert events[-1]["success"] is True


TIMEOUT_FORM = f"""
<div class="lux-overlay glass" id="form">
  <div><label for="company">Company *</label><input id="company" type="text"></div>
  <div><label for="notes">Notes</label><textarea id="notes"></textarea></div>
  <div><label>Ticket type *</label>
    <div class="lux-input" data-menu="menu-ticket"><span class="placeholder">Select an option</span></div>
  </div>
  <div><label>Interests *</label>
    <div class="lux-input" data-menu="menu-interests"><span class="placeholder">Select one or more</span></div>
  </div>
  <div class="lux-checkbox">
    <input type="checkbox" id="rules"><label class="checkbox-icon"></label>
    <label class="text-label"><div>I accept the rules *</div></label>
  </div>
  <div class="lux-checkbox">
    <input type="checkbox" id="news"><label class="checkbox-icon"></label>
    <label class="text-label"><div>Send me news</div></label>
  </div>
  {SUBMIT}
</div>
<div class="lux-menu" id="menu-ticket" hidden>
  <div class="lux-menu-item">General</div><div class="lux-menu-item">VIP</div>
</div>
<div class="lux-menu" id="menu-interests" data-multi hidden>
  <div class="lux-menu-item">AI</div><div class="lux-menu-item">Web</div>
</div>
"""


@pytest.mark.asyncio
async def test_oracle_timeout_uses_fallbacks_for_every_mandatory_field():
    page = FakePage(TIMEOUT_FORM)
    oracle = _timeout_oracle()
    resolver = FormResolver(page, oracle, ProfileStore())

    outcome = await resolver.process()

    assert len(oracle.client.chat.completions.calls) == 3
    assert outcome.success is True
    assert outcome.results == {
        "Company": "n/a",
        "Notes": None,
        "Ticket type": "General",
        "Interests": ["AI"],
        "I accept the rules": True,
        "Send me news": None,
    }
    assert await page.is_checked(page.by_id("rules"))
    assert not await page.is_checked(page.by_id("news"))
    assert page.selections == {"menu-ticket": ["General"], "menu-interests": ["AI"]}


TERMS_FORM = f"""
<div class="lux-overlay glass" id="form">
  <div class="lux-checkbox" data-terms="terms">
    <input type="checkbox" id="agree"><label class="checkbox-icon"></label>
    <label class="text-label"><div>I agree to the terms *</div></label>
  </div>
  {SUBMIT}
</div>
<div class="lux-modal" id="terms" hidden>
  <div>Accept Terms</div>
  <textarea class="lux-naked-input" id="signature"></textarea>
  <button id="sign" data-closes="terms" data-checks="agree">Sign &amp; Accept</button>
</div>
"""


@pytest.mark.asyncio
async def test_mandatory_checkbox_falls_through_to_terms_dialog():
    page = FakePage(TERMS_FORM)
    outcome = await FormResolver(page, _oracle('{"I agree to the terms": true}'), ProfileStore({"Name": "Ada"})).process()

    assert outcome.success is True
    assert outcome.results == {"I agree to the terms": True}
    assert page.fills == {"signature": "Ada"}
    # The checkbox is clicked once; the oracle's answer already asked for True.
    assert [click.get("id") or click.name for click in page.clicks] == ["label", "sign", "submit"]


@pytest.mark.asyncio
async def test_terms_without_profile_name_fails_the_form(tmp_path):
    page = FakePage(TERMS_FORM)
    outcome = await FormResolver(page, _timeout_oracle(), ProfileStore(), snapshot_dir=tmp_path).process()

    assert outcome.success is False
    assert outcome.results is None
    assert "I agree to the terms" in outcome.failure
    assert all(click.get("id") != "submit" for click in page.clicks)
    assert list(tmp_path.glob("form_mandatoryunresolved_*.html"))


@pytest.mark.asyncio
async def test_mandatory_choice_without_options_fails_before_submit():
    page = FakePage(
        f"""
        <div class="lux-overlay glass" id="form">
          <div><label>Session *</label>
            <div class="lux-input" data-menu="menu-empty"><span class="placeholder">Select an option</span></div>
          </div>
          {SUBMIT}
        </div>
        <div class="lux-menu" id="menu-empty" hidden></div>
        """
    )
    outcome = await FormResolver(page, _timeout_oracle(), ProfileStore()).process()

    assert outcome.success is False
    res = outcome.resolutions[0]
    assert (res.source, res.error) == (ResolutionSource.UNRESOLVED, "mandatory_unresolved")


@pytest.mark.asyncio
async def test_prefilled_values_are_kept_and_not_sent_to_oracle():
    page = FakePage(
        f"""
        <div class="lux-overlay glass" id="form">
          <div><label for="email">Email *</label><input id="email" type="email" value="ada@example.com"></div>
          {SUBMIT}
        </div>
        """
    )
    oracle = _oracle()
    outcome = await FormResolver(page, oracle, ProfileStore()).process()

    assert outcome.results == {"Email": "ada@example.com"}
    assert oracle.client.chat.completions.calls == []
    assert page.fills == {}


@pytest.mark.asyncio
async def test_unverified_submission_is_a_failure():
    page = FakePage(BASIC_FORM.replace('data-closes="form"', ""))
    outcome = await FormResolver(page, _timeout_oracle(), ProfileStore({"field2": "x"})).process()

    assert outcome.success is False
    assert outcome.results is None
    assert outcome.failure == "submission not verified"


@pytest.mark.asyncio
async def test_missing_container_fails_fast():
    outcome = await FormResolver(FakePage("<div>No form</div>"), _timeout_oracle(), ProfileStore()).process()
    assert (outcome.success, outcome.failure) == (False, "form container not visible")


@pytest.mark.asyncio
async def test_register_on_page_skips_registered_and_runs_form():
    registered = FakePage('<div class="title mt-2 fw-medium">Pending Approval</div><button>Register</button>')
    assert await register_on_page(registered, _timeout_oracle(), ProfileStore()) is True
    assert registered.clicks == []

    page = FakePage(
        '<button id="register" data-menu="form">Register</button>'
        + BASIC_FORM.replace('id="form"', 'id="form" hidden')
    )
    oracle = _oracle('{"field1": "Hello", "choice": "Option3"}')
    assert await register_on_page(page, oracle, ProfileStore({"field2": "Acme"})) is True
    assert page.fills == {"f2": "Acme", "f1": "Hello"}
    assert page.selections["choice"] == ["Option3"]


@pytest.mark.asyncio
async def test_answer_questions_defaults_when_oracle_is_down():
    questions = [
        SequentialQuestion(id="1", label="Company", question_type="text", required=True),
        SequentialQuestion(id="2", label="Track", question_type="dropdown", options=["Dev", "Ops"], required=True),
        SequentialQuestion(id="3", label="Terms", question_type="terms", required=False),
    ]
    answers = await answer_questions(_timeout_oracle(), questions, ProfileStore())
    assert [answer.answer for answer in answers] == ["N/A", "Dev", False]


@pytest.mark.asyncio
async def test_case_folded_oracle_key_reaches_its_field():
    page = FakePage(
        f"""
        <div class="lux-overlay glass" id="form">
          <div><label for="role">Role *</label>
            <select id="role"><option>Engineer</option><option>Designer</option></select>
          </div>
          {SUBMIT}
        </div>
        """
    )
    outcome = await FormResolver(page, _oracle('{"role": "Designer"}'), ProfileStore()).process()

    assert outcome.results == {"Role": "Designer"}
    assert page.selections == {"role": ["Designer"]}
    assert outcome.resolutions[0].source is ResolutionSource.ORACLE


RERENDERED_BODY = f"""
  <div><label for="f1-new">field1 *</label><input id="f1-new" type="text"></div>
  <div><label for="f2-new">field2</label><input id="f2-new" type="text"></div>
  <div><label for="choice-new">choice *</label>
    <select id="choice-new"><option>Option1</option><option>Option2</option></select>
  </div>
  {SUBMIT}
"""


class _RerenderingCompletions(_Completions):
    """Replaces the form's children with fresh elements while the oracle is thinking."""

    def __init__(self, page: FakePage, replies: List[object]) -> None:
        super().__init__(replies)
        self.page = page

    async def create(self, **kwargs):
        form = self.page.by_id("form")
        form.clear()
        for child in list(BeautifulSoup(RERENDERED_BODY, "html.parser").contents):
            form.append(child)
        return await super().create(**kwargs)


@pytest.mark.asyncio
async def test_commit_targets_elements_rendered_after_discovery():
    page = FakePage(BASIC_FORM)
    completions = _RerenderingCompletions(page, ['{"field1": "Hello", "choice": "Option2"}'])
    oracle = OracleClient(SimpleNamespace(chat=SimpleNamespace(completions=completions)), sleep=_no_sleep)

    outcome = await FormResolver(page, oracle, ProfileStore({"field2": "Acme"})).process()

    assert outcome.success is True
    assert outcome.results == {"field1": "Hello", "field2": "Acme", "choice": "Option2"}
    assert page.fills == {"f2": "Acme", "f1-new": "Hello"}
    assert page.selections == {"choice-new": ["Option2"]}
    assert page.by_id("f1-new")["value"] == "Hello"


@pytest.mark.asyncio
async def test_profile_fills_field_known_only_by_name():
    page = FakePage(
        f"""
        <div class="lux-overlay glass" id="form">
          <div><input type="text" name="organisation"></div>
          {SUBMIT}
        </div>
        """
    )
    oracle = _oracle()
    outcome = await FormResolver(page, oracle, ProfileStore({"Organisation": "Acme"})).process()

    assert outcome.results == {"organisation": "Acme"}
    assert page.fills == {"organisation": "Acme"}
    assert oracle.client.chat.completions.calls == []


@pytest.mark.asyncio
async def test_answer_question_file_reads_questions_in_order(tmp_path):
    path = tmp_path / "questions.json"
    path.write_text(
        json.dumps(
            [
                {"id": "1", "label": "Company", "question_type": "text", "required": True},
                {"id": "2", "label": "Track", "question_type": "dropdown", "options": ["Dev", "Ops"], "required": True},
                {"id": "3", "label": "Terms", "question_type": "terms"},
            ]
        ),
        encoding="utf-8",
    )
    oracle = _oracle('["Acme", "Ops", true]')

    answers = await answer_question_file(
        path, profile=ProfileStore({"Company": "Acme"}), run_config={}, event_name="Meetup", oracle=oracle
    )

    assert [(answer.question_id, answer.answer) for answer in answers] == [("1", "Acme"), ("2", "Ops"), ("3", True)]
    assert "Meetup" in oracle.client.chat.completions.calls[0]["messages"][-1]["content"]
