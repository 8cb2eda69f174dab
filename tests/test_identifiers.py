import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from form_agent.identifiers import identifiers_match, sanitize_identifier, split_mandatory_marker  # noqa: E402


def test_sanitize_is_whitespace_and_marker_stable():
    assert sanitize_identifier(" Full Name * ") == sanitize_identifier("Full Name*") == "Full Name"


@pytest.mark.parametrize(
    "raw",
    [
        "🎟️ Ticket   type:",
        "What's your role? *",
        "LinkedIn (URL) / Website.",
        "  Company\n name  ",
        "",
    ],
)
def test_sanitize_is_idempotent(raw):
    once = sanitize_identifier(raw)
    assert sanitize_identifier(once) == once


def test_sanitize_strips_pictographs_and_trailing_punctuation():
    assert sanitize_identifier("🎟️ Ticket   type:") == "Ticket type"
    assert sanitize_identifier("What's your role?") == "Whats your role"
    assert sanitize_identifier("Phone (optional)") == "Phone (optional)"


def test_split_mandatory_marker():
    assert split_mandatory_marker("Email *") == ("Email", True)
    assert split_mandatory_marker("Email") == ("Email", False)
    assert split_mandatory_marker(None) == ("", False)


def test_identifiers_match_is_case_insensitive_containment():
    assert identifiers_match("Your Email Address *", "email address")
    assert not identifiers_match("Company", "Email")
    assert not identifiers_match("Anything", "")
