"""CLI entrypoint for the form agent."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import List

from form_agent.config import DATASET_ROOT, DEFAULT_BROWSER, PROFILE_FILE, RUN_CONFIG_FILE, load_run_config
from form_agent.profile import ProfileStore
from form_agent.runner import answer_question_file, read_url_file, run_event_urls


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Fill and submit event registration forms.")
    parser.add_argument("--url", action="append", default=[], help="Event page URL (repeatable).")
    parser.add_argument("--urls-file", help="File with one event URL per line.")
    parser.add_argument("--profile", default=str(PROFILE_FILE), help="Applicant profile ('key: value' lines).")
    parser.add_argument("--config", default=str(RUN_CONFIG_FILE), help="Run configuration ('KEY=value' lines).")
    parser.add_argument("--outdir", default=str(DATASET_ROOT), help="Directory for ledgers, outcome log and snapshots.")
    parser.add_argument("--headless", action="store_true", help="Run the browser in headless mode.")
    parser.add_argument(
        "--browser",
        default=None,
        help=f"Browser engine to use (chrome, chromium, firefox, or webkit). Defaults to {DEFAULT_BROWSER}.",
    )
    parser.add_argument("--profile-dir", help="Optional user data directory to reuse between runs.")
    parser.add_argument("--concurrency", type=int, default=1, help="Event pages processed at the same time.")
    parser.add_argument("--questions", help="JSON list of registration questions to answer in order (no browser).")
    parser.add_argument("--event-name", default="", help="Event name given to the oracle with --questions.")
    parser.add_argument("--log-level", default="INFO", help="Python logging level.")
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    log_file = _configure_logging(args.log_level)
    logging.info("Log file: %s", log_file)

    profile = ProfileStore.load(Path(args.profile).expanduser())
    if not profile:
        logging.warning("Profile is empty; oracle answers and fallbacks will carry the forms.")
    run_config = load_run_config(Path(args.config).expanduser())

    if args.questions:
        questions_path = Path(args.questions).expanduser()
        if not questions_path.is_file():
            raise SystemExit(f"Questions file not found: {questions_path}")
        answers = asyncio.run(
            answer_question_file(questions_path, profile=profile, run_config=run_config, event_name=args.event_name)
        )
        print(json.dumps([answer.model_dump() for answer in answers], indent=2, ensure_ascii=False))
        return

    urls = _collect_urls(args)

    results = asyncio.run(
        run_event_urls(
            urls,
            profile=profile,
            run_config=run_config,
            out_dir=args.outdir,
            headless=args.headless,
            browser=args.browser,
            profile_dir=args.profile_dir,
            concurrency=args.concurrency,
        )
    )
    failed = [url for url, success in results.items() if not success]
    if failed:
        logging.warning("%s of %s events failed: %s", len(failed), len(results), failed)
        raise SystemExit(1)


def _collect_urls(args: argparse.Namespace) -> List[str]:
    urls = list(args.url)
    if args.urls_file:
        urls_path = Path(args.urls_file).expanduser()
        if not urls_path.is_file():
            raise SystemExit(f"URL file not found: {urls_path}")
        urls.extend(read_url_file(urls_path))
    if not urls:
        raise SystemExit("Provide at least one --url or a --urls-file.")
    if args.concurrency < 1:
        raise SystemExit("--concurrency must be at least 1")
    if args.profile_dir:
        profile_path = Path(args.profile_dir).expanduser()
        if profile_path.exists() and not profile_path.is_dir():
            raise SystemExit(f"Profile directory must be a directory path: {profile_path}")
    return urls


def _configure_logging(log_level: str) -> Path:
    level = getattr(logging, log_level.upper(), logging.INFO)
    log_dir = Path("logs")
    log_dir.mkdir(exist_ok=True)
    log_file = log_dir / f"form-agent-{datetime.now(timezone.utc).strftime('%Y%m%d-%H%M%S')}.log"
    formatter = logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(formatter)
    file_handler = logging.FileHandler(log_file, encoding="utf-8")
    file_handler.setFormatter(formatter)
    logging.basicConfig(level=level, handlers=[stream_handler, file_handler])
    return log_file


if __name__ == "__main__":
    main()
