"""Batch language-model oracle for form answers."""

from __future__ import annotations

import asyncio
import json
import logging
import re
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Sequence, Type, Union

from openai import APIError, APIStatusError, AsyncOpenAI, RateLimitError

from .config import (
    FALLBACK_TEXT,
    ORACLE_BACKOFF_S,
    ORACLE_BASE_URL,
    ORACLE_MAX_ATTEMPTS,
    ORACLE_MODEL,
    ORACLE_RATE_LIMIT_BACKOFF_S,
    ORACLE_SEQUENCE_MODEL,
    ORACLE_TEMPERATURE,
    ORACLE_TIMEOUT_S,
    get_oracle_api_key,
)
from .identifiers import sanitize_identifier
from .models import FieldAnswer, FieldKind, FieldRequest, SequentialQuestion
from .profile import ProfileStore

logger = logging.getLogger(__name__)

NO_ANSWER_SENTINELS = {"", "NULL"}
TRUE_WORDS = {"true", "yes", "y", "checked", "agree", "1"}
FALSE_WORDS = {"false", "no", "n", "unchecked", "0"}

DEFAULT_CONTEXT = "Fill form fields for event registration."

SYSTEM_PROMPT = (
    "You fill registration forms on behalf of a user. "
    "Answer with ONE JSON object and nothing else: no prose, no markdown, no comments."
)

DEFAULT_BATCH_TEMPLATE = (
    "User profile: {profile}\n"
    "Context: {context}\n"
    "Form fields:\n{fields}\n\n"
    "Provide a JSON object with one entry per field.\n"
    "RULES:\n"
    "1. KEYS MUST BE EXACT: copy every field identifier verbatim as the key. "
    "Do not change phrasing, case, punctuation or spacing.\n"
    "2. USE PROFILE: if the profile contains a value for a field, use it.\n"
    "3. MANDATORY FIELDS (*): never answer null or NULL. If the profile lacks the information "
    'and the field is text, answer exactly "{fallback}".\n'
    "4. OPTIONAL FIELDS: answer null when the profile gives no reasonable answer.\n"
    "5. single_choice: answer ONE value copied STRICTLY from its Options list; if nothing matches "
    "exactly, pick the most similar option.\n"
    "6. multi_choice: answer a JSON array of values copied STRICTLY from its Options list.\n"
    "7. boolean: answer true or false.\n"
    "8. ONLY JSON: the response must start with {{ and end with }}.\n"
    'Example: {{"Exact Identifier": "Value", "Another Identifier": ["Option A"]}}'
)

SEQUENCE_PROMPT = (
    "You provide answers for event registration forms. Based on the user's profile and the "
    "questions below, return ONLY a JSON array with exactly {count} elements, one per question, "
    "in the order listed. No other text.\n"
    "- text questions: a string.\n"
    "- dropdown/select: one option copied strictly from its options.\n"
    "- multi-select: an array of options copied strictly from its options ([] when none fit).\n"
    "- agree-check/terms: true or false.\n"
    "Mandatory questions must never be null: use \"N/A\" for text, the most suitable or first "
    "option for choices, and true for terms. Optional questions without a reasonable answer are null.\n\n"
    "User profile: {profile}\n"
    "Event: {event}\n"
    "Questions (total {count}):\n{questions}"
)

_THINK_BLOCK = re.compile(r"<think>.*?</think>", re.DOTALL | re.IGNORECASE)
_FENCED_BLOCK = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```", re.IGNORECASE)
_BARE_NULL = re.compile(r"(?<=[:\[,])(\s*)NULL\b")

Sleep = Callable[[float], Awaitable[None]]
Structured = Union[Dict[str, Any], List[Any]]


def build_client(api_key: Optional[str] = None, base_url: str = ORACLE_BASE_URL) -> Optional[AsyncOpenAI]:
    """Return an OpenAI-compatible client, or None when no API key is configured.

    SDK-level retries are disabled; ``OracleClient`` owns the retry policy.
    """
    key = api_key or get_oracle_api_key()
    if not key:
        return None
    return AsyncOpenAI(api_key=key, base_url=base_url, max_retries=0)


def extract_structured(content: str, expected: Type[Structured] = dict) -> Optional[Structured]:
    """Coerce unstructured model text into one JSON value of type ``expected``.

    Tried in order: the whole response, a fenced code block, then the first
    balanced ``{...}``/``[...]`` span that parses.
    """
    if not content:
        return None
    text = _THINK_BLOCK.sub("", content).strip()
    text = _BARE_NULL.sub(r"\1null", text)

    candidates: List[str] = [text]
    candidates.extend(match.group(1) for match in _FENCED_BLOCK.finditer(text))
    for candidate in candidates:
        parsed = _loads(candidate)
        if isinstance(parsed, expected):
            return parsed

    opener, closer = ("{", "}") if expected is dict else ("[", "]")
    for span in _balanced_spans(text, opener, closer):
        parsed = _loads(span)
        if isinstance(parsed, expected):
            return parsed
    return None


def _loads(candidate: str) -> Any:
    try:
        return json.loads(candidate)
    except (json.JSONDecodeError, ValueError):
        return None


def _balanced_spans(text: str, opener: str, closer: str):
    """Yield every balanced opener/closer span, respecting JSON string literals."""
    start = text.find(opener)
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for idx in range(start, len(text)):
            char = text[idx]
            if in_string:
                if escaped:
                    escaped = False
                elif char == "\\":
                    escaped = True
                elif char == '"':
                    in_string = False
                continue
            if char == '"':
                in_string = True
            elif char == opener:
                depth += 1
            elif char == closer:
                depth -= 1
                if depth == 0:
                    yield text[start : idx + 1]
                    break
        start = text.find(opener, start + 1)


def is_no_answer(raw: Any) -> bool:
    if raw is None:
        return True
    if isinstance(raw, str):
        return raw.strip().upper() in NO_ANSWER_SENTINELS
    if isinstance(raw, list):
        return len(raw) == 0
    return False


def match_option(options: Sequence[str], answer: str) -> Optional[str]:
    """Map an answer onto the recorded option it names: exact, then sanitized, then prefix."""
    wanted = answer.strip().lower()
    if not wanted:
        return None
    for option in options:
        if option.strip().lower() == wanted:
            return option
    sanitized = sanitize_identifier(answer).lower()
    for option in options:
        if sanitize_identifier(option).lower() == sanitized:
            return option
    for option in options:
        if option.strip().lower().startswith(wanted):
            return option
    return None


def decode_answer(request: FieldRequest, raw: Any) -> Optional[FieldAnswer]:
    """Validate a raw oracle value against the requested field.

    Returns None for the no-answer sentinel and for values whose type or option
    does not fit the field; callers treat both as "no answer".
    """
    if is_no_answer(raw):
        return None
    kind = request.kind

    if kind is FieldKind.TEXT:
        if isinstance(raw, bool):
            return FieldAnswer(kind=kind, value="Yes" if raw else "No")
        if isinstance(raw, (str, int, float)):
            return FieldAnswer(kind=kind, value=str(raw).strip())
        return None

    if kind is FieldKind.SINGLE_CHOICE:
        if isinstance(raw, list) and len(raw) == 1:
            raw = raw[0]
        if not isinstance(raw, (str, int, float)) or isinstance(raw, bool):
            return None
        text = str(raw).strip()
        if not request.options:
            return FieldAnswer(kind=kind, value=text) if text else None
        option = match_option(request.options, text)
        return FieldAnswer(kind=kind, value=option) if option is not None else None

    if kind is FieldKind.MULTI_CHOICE:
        if isinstance(raw, str):
            items = [part.strip() for part in raw.split(",")]
        elif isinstance(raw, list):
            items = [str(item).strip() for item in raw if isinstance(item, (str, int, float)) and not isinstance(item, bool)]
        else:
            return None
        chosen: List[str] = []
        for item in items:
            if not item:
                continue
            value = match_option(request.options, item) if request.options else item
            if value is not None and value not in chosen:
                chosen.append(value)
        return FieldAnswer(kind=kind, value=chosen) if chosen else None

    if isinstance(raw, bool):
        return FieldAnswer(kind=kind, value=raw)
    if isinstance(raw, (int, float)):
        return FieldAnswer(kind=kind, value=bool(raw))
    if isinstance(raw, str):
        lowered = raw.strip().lower()
        if lowered in TRUE_WORDS:
            return FieldAnswer(kind=kind, value=True)
        if lowered in FALSE_WORDS:
            return FieldAnswer(kind=kind, value=False)
    return None


class OracleClient:
    """Ask an OpenAI-compatible chat model for every unresolved field in one call."""

    def __init__(
        self,
        client: Optional[AsyncOpenAI] = None,
        model: str = ORACLE_MODEL,
        *,
        sequence_model: str = ORACLE_SEQUENCE_MODEL,
        prompt_template: Optional[str] = None,
        fallback_text: str = FALLBACK_TEXT,
        timeout_s: float = ORACLE_TIMEOUT_S,
        max_attempts: int = ORACLE_MAX_ATTEMPTS,
        backoff_s: float = ORACLE_BACKOFF_S,
        rate_limit_backoff_s: float = ORACLE_RATE_LIMIT_BACKOFF_S,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.client = client
        self.model = model
        self.sequence_model = sequence_model
        self.prompt_template = prompt_template or DEFAULT_BATCH_TEMPLATE
        self.fallback_text = fallback_text
        self.timeout_s = timeout_s
        self.max_attempts = max(1, max_attempts)
        self.backoff_s = backoff_s
        self.rate_limit_backoff_s = rate_limit_backoff_s
        self._sleep = sleep

    @classmethod
    def from_run_config(cls, client: Optional[AsyncOpenAI], run_config: Mapping[str, str]) -> "OracleClient":
        return cls(
            client,
            model=run_config.get("FORM_AGENT_MODEL") or run_config.get("GROQ_API_MODEL") or ORACLE_MODEL,
            sequence_model=run_config.get("GROQ_API_MODEL_SEQ_ANSWERS") or ORACLE_SEQUENCE_MODEL,
            prompt_template=run_config.get("LLM_BATCH_PROMPT_TEMPLATE"),
        )

    def build_batch_prompt(
        self,
        fields: Sequence[FieldRequest],
        profile: ProfileStore,
        instructions: Optional[str] = None,
    ) -> str:
        values = {
            "profile": profile.summary(),
            "fields": "\n".join(field.describe() for field in fields),
            "context": instructions or DEFAULT_CONTEXT,
            "fallback": self.fallback_text,
        }
        values["profileString"] = values["profile"]
        values["fieldDescriptions"] = values["fields"]
        try:
            return self.prompt_template.format(**values)
        except (KeyError, IndexError, ValueError) as exc:
            logger.warning("Invalid batch prompt template (%s); using the default", exc)
            return DEFAULT_BATCH_TEMPLATE.format(**values)

    async def resolve_batch(
        self,
        fields: Sequence[FieldRequest],
        profile: ProfileStore,
        instructions: Optional[str] = None,
    ) -> Dict[str, FieldAnswer]:
        """Return decoded answers keyed by requested identifier.

        Never raises: an unreachable or unparsable oracle yields ``{}``.
        """
        if not fields:
            return {}
        if self.client is None:
            logger.warning("telemetry:oracle_unavailable reason=no_client fields=%s", len(fields))
            return {}

        messages = [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": self.build_batch_prompt(fields, profile, instructions)},
        ]
        logger.debug("Oracle batch prompt: %s", messages[-1]["content"])
        payload = await self._complete_structured(messages, self.model, dict)
        if payload is None:
            logger.warning("telemetry:oracle_unavailable reason=exhausted fields=%s", len(fields))
            return {}
        return self.decode_batch(fields, payload)

    def decode_batch(self, fields: Sequence[FieldRequest], payload: Mapping[str, Any]) -> Dict[str, FieldAnswer]:
        requested = {field.identifier: field for field in fields}
        folded = {identifier.lower(): field for identifier, field in requested.items()}
        decoded: Dict[str, FieldAnswer] = {}
        for raw_key, raw_value in payload.items():
            key = sanitize_identifier(str(raw_key))
            request = requested.get(key) or folded.get(key.lower())
            if request is None:
                logger.warning("Dropping oracle key %r (sanitized %r): not requested", raw_key, key)
                continue
            answer = decode_answer(request, raw_value)
            if answer is None:
                logger.info("No usable oracle answer for '%s': %r", key, raw_value)
                continue
            decoded[request.identifier] = answer
        return decoded

    async def resolve_sequence(
        self,
        questions: Sequence[SequentialQuestion],
        profile: ProfileStore,
        event_name: str = "",
    ) -> Optional[List[Any]]:
        """Ordered one-answer-per-question mode. None unless the array length matches."""
        if not questions:
            return []
        if self.client is None:
            logger.warning("telemetry:oracle_unavailable reason=no_client questions=%s", len(questions))
            return None

        lines = []
        for idx, question in enumerate(questions, start=1):
            line = f'{idx}. Label: "{question.label}", Type: {question.question_type}'
            if question.options:
                line += ", Options: [" + ", ".join(f'"{opt}"' for opt in question.options) + "]"
            line += f", Mandatory: {str(question.required).lower()}"
            lines.append(line)
        prompt = SEQUENCE_PROMPT.format(
            count=len(questions),
            profile=profile.summary(),
            event=event_name,
            questions="\n".join(lines),
        )
        messages = [{"role": "system", "content": prompt}]

        for attempt in range(1, self.max_attempts + 1):
            answers = await self._complete_structured(messages, self.sequence_model, list)
            if answers is not None and len(answers) == len(questions):
                return answers
            if answers is not None:
                logger.warning(
                    "Oracle returned %s answers for %s questions (attempt %s/%s)",
                    len(answers),
                    len(questions),
                    attempt,
                    self.max_attempts,
                )
            if attempt < self.max_attempts:
                await self._sleep(self.backoff_s * attempt)
        return None

    async def _complete_structured(
        self,
        messages: List[Dict[str, str]],
        model: str,
        expected: Type[Structured],
    ) -> Optional[Structured]:
        delay = self.backoff_s
        for attempt in range(1, self.max_attempts + 1):
            wait = delay
            try:
                response = await asyncio.wait_for(
                    self.client.chat.completions.create(
                        model=model,
                        messages=messages,
                        temperature=ORACLE_TEMPERATURE,
                    ),
                    timeout=self.timeout_s,
                )
                raw = response.choices[0].message.content if response.choices else ""
                logger.debug("Oracle raw response (attempt %s): %s", attempt, raw)
                payload = extract_structured(raw or "", expected)
                if payload is not None:
                    return payload
                logger.warning(
                    "Oracle response had no parsable %s (attempt %s/%s)",
                    expected.__name__,
                    attempt,
                    self.max_attempts,
                )
            except RateLimitError as exc:
                wait = self.rate_limit_backoff_s
                logger.warning("Oracle rate limited (attempt %s/%s): %s", attempt, self.max_attempts, exc)
            except APIStatusError as exc:
                logger.warning(
                    "Oracle returned status %s (attempt %s/%s)", exc.status_code, attempt, self.max_attempts
                )
            except APIError as exc:
                logger.warning("Oracle transport error (attempt %s/%s): %s", attempt, self.max_attempts, exc)
            except asyncio.TimeoutError:
                logger.warning(
                    "Oracle timed out after %ss (attempt %s/%s)", self.timeout_s, attempt, self.max_attempts
                )

            if attempt < self.max_attempts:
                logger.info("Waiting %.1fs before oracle retry", wait)
                await self._sleep(wait)
                delay *= 2
        return None
