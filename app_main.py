"""Application entry point for the Prize Quiz server."""

from __future__ import annotations

import argparse
from pathlib import Path
import sys

from prize_quiz.constants.network_constants import DEFAULT_HOST, DEFAULT_LOG_LEVEL, DEFAULT_PORT
from prize_quiz.core.services.record_store import StoreUnavailableError
from prize_quiz.core.submission_coordinator import SubmissionCoordinator
from prize_quiz.core.workbook_importer import (
    WorkbookImportError,
    load_prizes_from_workbook,
    load_questions_from_workbook,
    load_results_path_from_workbook,
)
from prize_quiz.server.api_server import run_api_server
from prize_quiz.utils.logging_config import configure_logging


def _parse_args(argv: list[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Serve the prize quiz to walk-up participants.")
    parser.add_argument("--questions", type=Path, help="Question workbook (.xlsx) to load.")
    parser.add_argument("--prizes", type=Path, help="Prize tier and code workbook (.xlsx) to load.")
    parser.add_argument("--results", type=Path, help="Record store workbook to append submissions to.")
    parser.add_argument(
        "--results-path-workbook",
        type=Path,
        help="Workbook whose cell A2 names the record store (used when --results is absent).",
    )
    parser.add_argument("--data-dir", type=Path, default=Path("."), help="Directory for the default record store.")
    parser.add_argument("--host", default=DEFAULT_HOST)
    parser.add_argument("--port", type=int, default=DEFAULT_PORT)
    parser.add_argument(
        "--highest-tier-first",
        action="store_true",
        help="Try prize tiers from the highest threshold down instead of in workbook order.",
    )
    parser.add_argument("--log-level", default=DEFAULT_LOG_LEVEL)
    return parser.parse_args(argv)


def build_coordinator(args: argparse.Namespace) -> SubmissionCoordinator:
    """Create the coordinator and load every workbook named on the command line."""
    results_path = args.results
    if results_path is None and args.results_path_workbook is not None:
        results_path = load_results_path_from_workbook(args.results_path_workbook)

    coordinator = SubmissionCoordinator(
        results_path,
        data_dir=args.data_dir,
        highest_tier_first=args.highest_tier_first,
    )
    if args.questions is not None:
        coordinator.load_question_bank(load_questions_from_workbook(args.questions).questions)
    if args.prizes is not None:
        prizes = load_prizes_from_workbook(args.prizes)
        coordinator.load_prize_inventory(prizes.tiers, prizes.codes)
    return coordinator


def main(argv: list[str] | None = None) -> None:
    """Initialize logging, load the quiz configuration and serve the API."""
    args = _parse_args(argv)
    logger = configure_logging(args.log_level)
    logger.info("Starting Prize Quiz server…")

    try:
        coordinator = build_coordinator(args)
    except (WorkbookImportError, StoreUnavailableError) as exc:
        logger.error("Cannot load quiz configuration: %s", exc)
        sys.exit(2)

    logger.info("Recording submissions to %s", coordinator.results_path)
    logger.info("Participant API listening on http://%s:%d/", args.host, args.port)
    try:
        run_api_server(coordinator, host=args.host, port=args.port, log_level=args.log_level)
    finally:
        coordinator.close()


if __name__ == "__main__":
    main()
