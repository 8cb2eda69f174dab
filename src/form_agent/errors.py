"""Failure taxonomy for form resolution."""

from __future__ import annotations


class FormAgentError(RuntimeError):
    """Base class for classified form-resolution failures."""

    code = "form_agent_error"


class BackendError(FormAgentError):
    """Raised by page backend primitives when the underlying driver fails."""

    code = "backend_error"


class ElementNotFoundError(FormAgentError):
    """A field could not be located (or re-located) in the form container."""

    code = "element_not_found"

    def __init__(self, identifier: str) -> None:
        super().__init__(f"Could not locate field '{identifier}'")
        self.identifier = identifier


class OracleUnavailableError(FormAgentError):
    """Transport or parse failures exhausted every oracle attempt."""

    code = "oracle_unavailable"


class OracleAnswerInvalidError(FormAgentError):
    """The oracle answered with a value of the wrong type or outside the options."""

    code = "oracle_answer_invalid"


class MandatoryUnresolvedError(FormAgentError):
    """A mandatory field has no committed value; the form must not be submitted."""

    code = "mandatory_unresolved"

    def __init__(self, identifiers: list[str]) -> None:
        super().__init__("Mandatory fields unresolved: " + ", ".join(identifiers))
        self.identifiers = identifiers


class SecondaryDialogTimeoutError(FormAgentError):
    """The terms confirmation surface never appeared or never closed."""

    code = "secondary_dialog_timeout"
