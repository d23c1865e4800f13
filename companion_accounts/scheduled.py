"""
Scheduled jobs - the `companion-accounts` command.

Usage:
    # Re-engage trials exhausted more than TRIAL_BUMP_AFTER_HOURS ago (hourly cron)
    companion-accounts bump-trials

    # Delete expired magic links
    companion-accounts purge-links

    # Apply pending database migrations
    companion-accounts migrate
"""

import argparse
import asyncio
import sys
from datetime import timedelta
from uuid import uuid4

from companion_accounts.api.dependencies import (
    get_backend_notifier,
    get_catalogue,
    get_dispatcher,
    get_email_sender,
)
from companion_accounts.config import settings
from companion_accounts.db.migration_runner import run_migrations
from companion_accounts.db.session import close_engines, get_write_session
from companion_accounts.models.domain import ReactivationResult
from companion_accounts.observability import get_logger, log_context, setup_logging
from companion_accounts.services.identity_store import IdentityStore
from companion_accounts.services.magic_link import MagicLinkService
from companion_accounts.services.notifier import ChatMessenger
from companion_accounts.services.trial_meter import TrialMeter

logger = get_logger(__name__)


async def bump_trials(messenger: ChatMessenger | None = None) -> ReactivationResult:
    """One reactivation sweep with the configured age and top-up."""
    owns_messenger = messenger is None
    if messenger is None:
        messenger = ChatMessenger(timeout_seconds=settings.outbound_timeout_seconds)
    try:
        async with get_write_session() as session:
            meter = TrialMeter(IdentityStore(session), allowance=settings.trial_message_allowance)
            result = await meter.reactivate_exhausted(
                threshold_age=timedelta(hours=settings.trial_bump_after_hours),
                top_up=settings.trial_bump_messages,
                messenger=messenger,
                catalogue=get_catalogue(),
            )
    finally:
        if owns_messenger:
            await messenger.close()

    logger.info(
        "trial_bump_sweep_complete",
        selected=result.selected,
        bumped=result.bumped,
        skipped=result.skipped,
        failed=result.failed,
    )
    return result


async def purge_links() -> int:
    async with get_write_session() as session:
        service = MagicLinkService(
            store=IdentityStore(session),
            email_sender=get_email_sender(),
            backend_notifier=get_backend_notifier(),
            dispatcher=get_dispatcher(),
            catalogue=get_catalogue(),
            link_base_url=settings.magic_link_base_url,
            ttl=timedelta(hours=settings.pending_link_ttl_hours),
        )
        return await service.purge_expired()


async def _run_async(command: str) -> None:
    try:
        if command == "bump-trials":
            await bump_trials()
        elif command == "purge-links":
            await purge_links()
    finally:
        await close_engines()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="companion-accounts",
        description="Scheduled maintenance for the companion accounts service",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)
    subparsers.add_parser("bump-trials", help="Top up long-exhausted trials once, after a nudge")
    subparsers.add_parser("purge-links", help="Delete expired magic links")
    subparsers.add_parser("migrate", help="Apply pending database migrations")
    return parser


def main(argv: list[str] | None = None) -> int:
    """Console script entry point."""
    args = build_parser().parse_args(argv)
    setup_logging()

    with log_context(job=args.command, run_id=uuid4().hex[:12]):
        logger.info("job_started")
        try:
            if args.command == "migrate":
                revision = run_migrations()
                logger.info("job_finished", revision=revision)
            else:
                asyncio.run(_run_async(args.command))
                logger.info("job_finished")
        except Exception as e:
            logger.error("job_failed", error=str(e), exc_info=True)
            return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
