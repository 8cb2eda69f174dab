"""Event-page runner: browser lifecycle and one form flow per event URL."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from playwright.async_api import BrowserContext, Error as PlaywrightError, Page, async_playwright

from .backend import PageBackend, PlaywrightBackend
from .config import (
    DATASET_ROOT,
    DEFAULT_BOUNDS,
    DEFAULT_BROWSER,
    FAILED_EVENTS_FILE,
    PLAYWRIGHT_CHANNEL,
    PLAYWRIGHT_EXECUTABLE,
    PROCESSED_EVENTS_FILE,
    USER_DATA_DIR,
    Bounds,
    get_oracle_api_key,
)
from .diagnostics import OutcomeLog, UrlLedger
from .engine import FormResolver, answer_questions
from .errors import BackendError
from .label_resolver import find_with_text
from .models import SequentialAnswer, SequentialQuestion
from .oracle import OracleClient, build_client
from .profile import ProfileStore
from .selectors import DEFAULT_SELECTORS, FormSelectors
from .status import check_registration_status

logger = logging.getLogger(__name__)

VIEWPORT = {"width": 1440, "height": 900}


async def register_on_page(
    backend: PageBackend,
    oracle: OracleClient,
    profile: ProfileStore,
    *,
    run_config: Optional[Mapping[str, str]] = None,
    outcome_log: Optional[OutcomeLog] = None,
    snapshot_dir: Optional[Path] = None,
    selectors: FormSelectors = DEFAULT_SELECTORS,
    bounds: Bounds = DEFAULT_BOUNDS,
) -> bool:
    """Register on an already loaded event page. True when registered (now or before)."""
    if await check_registration_status(backend, selectors, bounds):
        logger.info("Already registered on %s; skipping", backend.url)
        return True

    button = await find_with_text(backend, None, selectors.register_button, selectors.register_button_texts)
    if button is None:
        logger.info("No register button on %s; assuming already registered or closed", backend.url)
        return True
    try:
        await backend.click(button, timeout_ms=bounds.field_ms)
    except BackendError as exc:
        logger.warning("Register button click failed on %s: %s", backend.url, exc)
        return False

    container = await backend.wait_for_selector(None, selectors.container, bounds.modal_ms)
    if container is None:
        # One-click registrations never open the form.
        registered = await check_registration_status(backend, selectors, bounds)
        logger.info("No registration form appeared on %s; registered=%s", backend.url, registered)
        return registered

    resolver = FormResolver(
        backend,
        oracle,
        profile,
        selectors=selectors,
        bounds=bounds,
        run_config=run_config,
        outcome_log=outcome_log,
        snapshot_dir=snapshot_dir,
    )
    outcome = await resolver.process(container)
    if outcome.success:
        logger.info("Registered on %s: %s", backend.url, outcome.results)
    else:
        logger.warning("Registration failed on %s: %s", backend.url, outcome.failure)
    return outcome.success


async def run_event_urls(
    urls: Sequence[str],
    *,
    profile: ProfileStore,
    run_config: Mapping[str, str],
    out_dir: str,
    headless: bool,
    browser: Optional[str],
    profile_dir: Optional[str],
    concurrency: int = 1,
) -> Dict[str, bool]:
    """Process each event URL in its own page, at most ``concurrency`` at a time."""
    dataset_root = Path(out_dir or DATASET_ROOT)
    dataset_root.mkdir(parents=True, exist_ok=True)
    processed = UrlLedger(dataset_root / PROCESSED_EVENTS_FILE)
    failed = UrlLedger(dataset_root / FAILED_EVENTS_FILE)
    outcome_log = OutcomeLog(dataset_root / "outcomes.jsonl")
    snapshot_dir = dataset_root / "snapshots"

    already_done = processed.read()
    todo = [url for url in dict.fromkeys(urls) if url not in already_done]
    if len(todo) < len(urls):
        logger.info("Skipping %s URLs already recorded in %s", len(urls) - len(todo), processed.path)
    if not todo:
        outcome_log.close()
        return {}

    client = build_client(get_oracle_api_key())
    if client is None:
        logger.warning("No oracle API key configured; every unanswered field will use its fallback")
    oracle = OracleClient.from_run_config(client, run_config)

    results: Dict[str, bool] = {}
    semaphore = asyncio.Semaphore(max(1, concurrency))

    async with async_playwright() as pw:
        context, resolved_dir = await _launch_browser(
            pw,
            browser_choice=(browser or run_config.get("BROWSER") or DEFAULT_BROWSER).lower(),
            headless=headless,
            profile_dir=profile_dir,
        )
        logger.info("Browser profile directory: %s", resolved_dir)

        async def _process(url: str) -> None:
            async with semaphore:
                success = await _process_url(context, url, oracle, profile, run_config, outcome_log, snapshot_dir)
            results[url] = success
            if success:
                processed.append(url)
            else:
                failed.append(url)
            outcome_log.write({"event": "url_processed", "url": url, "success": success})

        try:
            await asyncio.gather(*(_process(url) for url in todo))
        finally:
            try:
                await context.close()
            except PlaywrightError as exc:
                logger.debug("Context close failed: %s", exc)
            outcome_log.close()

    logger.info("Processed %s URLs: %s succeeded", len(results), sum(results.values()))
    return results


async def _process_url(
    context: BrowserContext,
    url: str,
    oracle: OracleClient,
    profile: ProfileStore,
    run_config: Mapping[str, str],
    outcome_log: OutcomeLog,
    snapshot_dir: Path,
) -> bool:
    page: Optional[Page] = None
    try:
        page = await context.new_page()
        logger.info("Opening %s", url)
        await page.goto(url, wait_until="load", timeout=DEFAULT_BOUNDS.page_load_ms)
        return await register_on_page(
            PlaywrightBackend(page),
            oracle,
            profile,
            run_config=run_config,
            outcome_log=outcome_log,
            snapshot_dir=snapshot_dir,
        )
    except Exception as exc:  # noqa: BLE001 - one event must not abort the run
        logger.error("Processing %s failed: %s", url, exc)
        outcome_log.write({"event": "url_error", "url": url, "error": str(exc)})
        return False
    finally:
        if page is not None:
            try:
                await page.close()
            except PlaywrightError:
                pass


async def _launch_browser(
    playwright,
    browser_choice: str,
    headless: bool,
    profile_dir: Optional[str],
) -> Tuple[BrowserContext, Path]:
    resolved_dir = _prepare_user_data_dir(profile_dir, browser_choice)
    launch_kwargs: Dict[str, Any] = {
        "user_data_dir": str(resolved_dir),
        "headless": headless,
        "viewport": VIEWPORT,
        "reduced_motion": "reduce",
    }
    if browser_choice == "chrome":
        if PLAYWRIGHT_EXECUTABLE:
            launch_kwargs["executable_path"] = PLAYWRIGHT_EXECUTABLE
        elif PLAYWRIGHT_CHANNEL:
            launch_kwargs["channel"] = PLAYWRIGHT_CHANNEL
        return await playwright.chromium.launch_persistent_context(**launch_kwargs), resolved_dir

    browser_type = getattr(playwright, browser_choice, None)
    if browser_type is None:
        raise ValueError(f"Unsupported browser engine: {browser_choice}")
    return await browser_type.launch_persistent_context(**launch_kwargs), resolved_dir


def _prepare_user_data_dir(profile_dir: Optional[str], browser_choice: str) -> Path:
    if profile_dir:
        dest = Path(profile_dir).expanduser()
        dest.mkdir(parents=True, exist_ok=True)
        logger.info("Using provided %s profile directory: %s", browser_choice, dest)
        return dest

    dest = USER_DATA_DIR / browser_choice
    dest.mkdir(parents=True, exist_ok=True)
    logger.info("Using agent-managed %s profile directory: %s", browser_choice, dest)
    return dest


def read_url_file(path: Path) -> List[str]:
    """Event URLs from a newline-delimited file; blank lines and ``#`` comments skipped."""
    lines = path.read_text(encoding="utf-8").splitlines()
    return [line.strip() for line in lines if line.strip() and not line.lstrip().startswith("#")]


async def answer_question_file(
    path: Path,
    *,
    profile: ProfileStore,
    run_config: Mapping[str, str],
    event_name: str = "",
    oracle: Optional[OracleClient] = None,
) -> List[SequentialAnswer]:
    """Answer a JSON list of registration questions in order; every gap gets its default."""
    raw = json.loads(path.read_text(encoding="utf-8"))
    questions = [SequentialQuestion.model_validate(item) for item in raw]
    if oracle is None:
        oracle = OracleClient.from_run_config(build_client(get_oracle_api_key()), run_config)
    answers = await answer_questions(oracle, questions, profile, event_name)
    logger.info("Answered %s questions from %s", len(answers), path)
    return answers
