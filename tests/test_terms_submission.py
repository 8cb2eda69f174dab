import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from fake_page import FakePage  # noqa: E402
from form_agent.errors import MandatoryUnresolvedError, SecondaryDialogTimeoutError  # noqa: E402
from form_agent.profile import ProfileStore  # noqa: E402
from form_agent.submission import SubmissionVerifier  # noqa: E402
from form_agent.terms import TermsState, TermsSubflow  # noqa: E402

TERMS_DIALOG = """
<div class="lux-modal" id="terms" {hidden}>
  <div class="title">Accept Terms</div>
  <textarea class="lux-naked-input" id="signature"></textarea>
  <button>Cancel</button>
  <button id="sign" data-closes="{closes}">Sign &amp; Accept</button>
</div>
"""


def _page(hidden: str = "", closes: str = "terms") -> FakePage:
    return FakePage(TERMS_DIALOG.format(hidden=hidden, closes=closes))


@pytest.mark.asyncio
async def test_terms_subflow_signs_with_full_name():
    page = _page()
    flow = TermsSubflow(page, ProfileStore({"Name": "Ada Lovelace"}))

    assert await flow.run("I accept the terms") is True
    assert flow.state is TermsState.CLOSED
    assert page.fills["signature"] == "Ada Lovelace"
    assert page.clicks[-1].get("id") == "sign"


@pytest.mark.asyncio
async def test_terms_subflow_times_out_without_dialog():
    page = _page(hidden="hidden")
    flow = TermsSubflow(page, ProfileStore({"Name": "Ada"}))

    with pytest.raises(SecondaryDialogTimeoutError):
        await flow.run("I accept the terms")
    assert flow.state is TermsState.FAILED


@pytest.mark.asyncio
async def test_terms_subflow_requires_profile_name():
    page = _page()
    flow = TermsSubflow(page, ProfileStore({"Email": "ada@example.com"}))

    with pytest.raises(MandatoryUnresolvedError):
        await flow.run("I accept the terms")
    assert page.fills == {}


@pytest.mark.asyncio
async def test_terms_subflow_fails_when_dialog_stays_open():
    page = _page(closes="elsewhere")
    flow = TermsSubflow(page, ProfileStore({"Name": "Ada"}))

    with pytest.raises(SecondaryDialogTimeoutError):
        await flow.run("I accept the terms")
    assert flow.state is TermsState.FAILED


FORM = """
<div class="lux-overlay glass" id="form">
  <div class="lux-collapse shown"><button id="submit" data-closes="{closes}" {disabled}>Register</button></div>
</div>
"""


@pytest.mark.asyncio
async def test_submission_verified_when_container_hides():
    page = FakePage(FORM.format(closes="form", disabled=""))
    assert await SubmissionVerifier(page).submit(page.by_id("form")) is True
    assert [click.get("id") for click in page.clicks] == ["submit"]


@pytest.mark.asyncio
async def test_submission_not_verified_is_not_retried():
    page = FakePage(FORM.format(closes="nothing", disabled=""))
    assert await SubmissionVerifier(page).submit(page.by_id("form")) is False
    assert len(page.clicks) == 1


@pytest.mark.asyncio
async def test_disabled_submit_is_never_clicked():
    page = FakePage(FORM.format(closes="form", disabled="disabled"))
    assert await SubmissionVerifier(page).submit(page.by_id("form")) is False
    assert page.clicks == []
