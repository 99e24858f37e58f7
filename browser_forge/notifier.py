"""Notifier module for Browser Forge.

Sends Telegram notifications for candidate lifecycle events: mining passes,
proposals ready for review, status changes and merge outcomes.
"""

from __future__ import annotations

import asyncio
import html
import os
from typing import Any, Dict

from dotenv import load_dotenv
from loguru import logger
from telegram import Bot
from telegram.constants import ParseMode


NOTIF_MINED = (
    "⛏️ <b>Browser Forge</b> — Mined {candidates} candidate(s)\n"
    "{skipped} malformed record(s) skipped"
)
NOTIF_PROPOSAL_READY = "📝 Proposal ready for <code>{candidate_id}</code>\n<i>{summary}</i>"
NOTIF_STATUS_CHANGED = "🔁 <code>{candidate_id}</code>: {previous} → <b>{status}</b>"
NOTIF_MERGED = "✅ <b>Merged</b> <code>{candidate_id}</code> into skill <code>{skill_id}</code>"
NOTIF_MERGE_FAILED = (
    "⚠️ Merge failed for <code>{candidate_id}</code>\n"
    "{error}\n"
    "Candidate stays approved."
)

NOTIF_REVIEW_SUMMARY = (
    "📊 <b>Browser Forge — Review Queue</b>\n"
    "━━━━━━━━━━━━━━━━━━━\n"
    "🕵️ Awaiting review: {pending}\n"
    "{pending_list}\n"
    "👍 Approved, not merged: {approved}\n"
    "{approved_list}\n"
    "✅ Merged: {merged}   ❌ Rejected: {rejected}\n"
    "📈 Total candidates: {total}\n"
    "━━━━━━━━━━━━━━━━━━━"
)

_EVENT_TEMPLATES: Dict[str, str] = {
    "mined": NOTIF_MINED,
    "proposal_ready": NOTIF_PROPOSAL_READY,
    "status_changed": NOTIF_STATUS_CHANGED,
    "merged": NOTIF_MERGED,
    "merge_failed": NOTIF_MERGE_FAILED,
}


def _get_telegram_credentials() -> tuple[str | None, str | None]:
    load_dotenv()
    token = os.environ.get("TELEGRAM_BOT_TOKEN")
    chat_id = os.environ.get("TELEGRAM_CHAT_ID")
    return token, chat_id


def _escape_html(text: Any) -> str:
    """Escape text for safe embedding in Telegram HTML messages."""
    return html.escape(str(text))


async def _send_telegram(text: str) -> None:
    """Send a Telegram message using HTML parse mode, with plain-text fallback."""
    token, chat_id = _get_telegram_credentials()
    if not token or not chat_id:
        logger.warning(
            "Telegram credentials missing; would have sent notification: {text}",
            text=text,
        )
        return

    try:
        bot = Bot(token=token)
    except Exception:
        logger.exception("Failed to create Telegram bot client.")
        return

    try:
        await bot.send_message(chat_id=chat_id, text=text, parse_mode=ParseMode.HTML)
        logger.info("Sent Telegram notification (HTML).")
        return
    except Exception:
        logger.exception("Failed to send Telegram message with HTML, falling back to plain text.")

    try:
        await bot.send_message(chat_id=chat_id, text=text)
        logger.info("Sent Telegram notification as plain text.")
    except Exception:
        logger.exception("Failed to send Telegram message as plain text.")


def _dispatch(message: str) -> None:
    try:
        asyncio.run(_send_telegram(message))
    except RuntimeError:
        # Already inside an event loop: schedule instead of blocking.
        logger.warning("Event loop already running; scheduling Telegram notification coroutine.")
        asyncio.get_running_loop().create_task(_send_telegram(message))


def build_message(event: str, **kwargs: Any) -> str:
    """Build a notification message from the event name and keyword arguments."""
    template = _EVENT_TEMPLATES.get(event)
    if not template:
        custom_message = kwargs.get("message")
        if custom_message:
            return _escape_html(custom_message)
        return f"Browser Forge event: {_escape_html(event)}"

    escaped_kwargs = {key: _escape_html(value) for key, value in kwargs.items()}
    try:
        return template.format(**escaped_kwargs)
    except KeyError as exc:
        logger.error(
            "Missing format argument {exc} for notification event '{event}'. "
            "Sending raw template without interpolation.",
            exc=exc,
            event=event,
        )
        return template


def notify(event: str, **kwargs: Any) -> None:
    """Format and send a notification for the given event.

    Synchronous wrapper around the async Telegram client. Delivery problems
    are logged and never raised to the caller.
    """
    _dispatch(build_message(event, **kwargs))


def build_review_summary_message(stats: Dict[str, Any]) -> str:
    """Format the review-queue report.

    Expected keys in ``stats``: pending, approved, merged, rejected, total
    (ints) and pending_list, approved_list (preformatted bullet lists).
    """
    fields = ("pending", "approved", "merged", "rejected", "total", "pending_list", "approved_list")
    return NOTIF_REVIEW_SUMMARY.format(
        **{name: _escape_html(stats.get(name, "")) for name in fields}
    )


def send_review_summary(stats: Dict[str, Any]) -> None:
    _dispatch(build_review_summary_message(stats))
