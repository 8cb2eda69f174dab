"""Markup vocabulary for registration forms.

All selectors are plain CSS so the same vocabulary works against a live page and
against static markup.
"""

from __future__ import annotations

from typing import Tuple

from pydantic import BaseModel

NATIVE_FIELD_SELECTOR = (
    'input:not([type="hidden"]):not([type="submit"]):not([type="checkbox"]):not([type="radio"]), '
    "select, textarea"
)

SINGLE_CHOICE_PLACEHOLDERS: Tuple[str, ...] = ("select an option",)
MULTI_CHOICE_PHRASES: Tuple[str, ...] = ("select one or more", "choose options")


class FormSelectors(BaseModel):
    container: str = "div.lux-overlay.glass"
    submit_button: str = "div.lux-collapse.shown > button"
    native_field: str = NATIVE_FIELD_SELECTOR
    multi_choice_trigger: str = "div.lux-menu-trigger-wrapper div.luma-input span"
    structural_trigger: str = "div.lux-input"
    trigger_placeholder: str = "span.placeholder"
    option_panel: str = "div.lux-menu"
    option_item: str = "div.lux-menu-item"
    checkbox_container: str = "div.lux-checkbox"
    checkbox_input: str = 'input[type="checkbox"]'
    checkbox_label: str = "label.text-label > div"
    checkbox_click_target: str = "label.checkbox-icon"
    terms_dialog: str = "div.lux-modal"
    terms_dialog_text: str = "Accept Terms"
    terms_textarea: str = "textarea.lux-naked-input"
    terms_confirm: str = "button"
    terms_confirm_text: str = "Sign & Accept"
    register_button: str = "button"
    register_button_texts: Tuple[str, ...] = ("Register", "Get Ticket", "Request to Join", "Join Waitlist")
    status_text: str = "div.title.mt-2.fw-medium"

    def candidate_fields(self) -> str:
        """Combined selector for every element discovery should consider."""
        return ", ".join([self.native_field, self.multi_choice_trigger, self.structural_trigger])

    def choice_fields(self) -> str:
        return ", ".join([self.native_field, self.structural_trigger, self.multi_choice_trigger])


DEFAULT_SELECTORS = FormSelectors()
