import json
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from fake_page import FakePage  # noqa: E402
from form_agent.config import DEFAULT_BROWSER, load_run_config  # noqa: E402
from form_agent.diagnostics import OutcomeLog, UrlLedger, save_markup_snapshot  # noqa: E402
from form_agent.profile import ProfileStore  # noqa: E402


def test_profile_load_and_lookup(tmp_path):
    path = tmp_path / "profile.txt"
    path.write_text("Name: Ada Lovelace\nWebsite: https://ada.dev\nnot a pair\nCompany: Analytical Engines\n", encoding="utf-8")

    profile = ProfileStore.load(path)

    assert len(profile) == 3
    assert profile.full_name == "Ada Lovelace"
    assert profile.get("Website") == "https://ada.dev"
    assert profile.lookup("company") == "Analytical Engines"
    assert profile.lookup("Organisation", name="company") == "Analytical Engines"
    assert profile.lookup("Shoe size") is None
    assert json.loads(profile.summary()) == profile.as_dict()


def test_profile_missing_file_is_empty(tmp_path):
    profile = ProfileStore.load(tmp_path / "absent.txt")
    assert not profile
    assert profile.full_name is None


def test_load_run_config(tmp_path):
    path = tmp_path / "config.txt"
    path.write_text("# comment\nLLM_BATCH_CONTEXT=Tech meetup = fun\nEMPTY=\nnoise\n", encoding="utf-8")

    config = load_run_config(path)

    assert config == {"LLM_BATCH_CONTEXT": "Tech meetup = fun", "BROWSER": DEFAULT_BROWSER}
    assert load_run_config(tmp_path / "missing.txt") == {}


def test_url_ledger_and_outcome_log(tmp_path):
    ledger = UrlLedger(tmp_path / "events.txt")
    assert ledger.read() == set()
    ledger.append("https://events.example/a")
    ledger.append("https://events.example/b")
    assert ledger.read() == {"https://events.example/a", "https://events.example/b"}

    log = OutcomeLog(tmp_path / "out" / "outcomes.jsonl")
    log.write({"event": "form_outcome", "success": True})
    log.close()
    entries = [json.loads(line) for line in (tmp_path / "out" / "outcomes.jsonl").read_text().splitlines()]
    assert entries[0]["event"] == "form_outcome"
    assert entries[0]["timestamp"].endswith("Z")


@pytest.mark.asyncio
async def test_markup_snapshot_writes_html_and_metadata(tmp_path):
    page = FakePage("<div id='x'>hello</div>")
    html_path = await save_markup_snapshot(page, tmp_path, "snap", extra={"field": "Email"})

    assert "hello" in html_path.read_text(encoding="utf-8")
    metadata = json.loads((tmp_path / "snap.json").read_text(encoding="utf-8"))
    assert metadata["url"] == page.url
    assert metadata["extra"] == {"field": "Email"}
