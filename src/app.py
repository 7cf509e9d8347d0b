"""Application entry point for the groupwatch monitor."""

from __future__ import annotations

import argparse
import asyncio
from datetime import date, datetime, timedelta
import logging
import os
from logging.handlers import RotatingFileHandler
from typing import Any, Optional

from art import tprint
from dotenv import load_dotenv
from telethon import events

import settings
from adapters.ai_client import ChatCompletionsClient
from adapters.base_notifier import IdempotentNotifier, LogNotifier
from adapters.json_config_store import JsonConfigStore
from adapters.scheduler import AsyncioDailyScheduler
from adapters.sqlite_storage import SQLiteStorage
from adapters.telegram_bot_notifier import TelegramBotNotifier
from adapters.telegram_mapper import GroupTitleResolver, build_raw_event
from adapters.telegram_notifier import TelegramSavedMessagesNotifier
from client import authorize, build_client
from core.aggregator import DailyAggregator
from core.classifier import ImportanceClassifier
from core.dedup import DedupCache
from core.processor import IngestionPipeline
from core.rate_limit import RateLimiter

NAME = "GROUPWATCH"
FONT = "tarty-1"


def _print_banner() -> None:
    tprint(NAME, FONT, space=1)


class _RedactingFormatter(logging.Formatter):
    def __init__(self, secrets: list[str], fmt: str, datefmt: Optional[str] = None) -> None:
        super().__init__(fmt=fmt, datefmt=datefmt)
        self._secrets = [secret for secret in secrets if secret]

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        for secret in self._secrets:
            message = message.replace(secret, "***")
        return message


def _collect_redaction_values(config: dict) -> list[str]:
    redact_cfg = config.get("redact", {}) if config else {}
    if not redact_cfg.get("enabled", False):
        return []
    values = []
    for name in redact_cfg.get("patterns", []):
        value = os.getenv(name)
        if value:
            values.append(value)
    return sorted(set(values), key=len, reverse=True)


def _configure_logging() -> None:
    config = settings.LOGGING or {}
    if not config.get("enabled", False):
        return

    load_dotenv()
    level_name = str(config.get("level", "INFO")).upper()
    level = getattr(logging, level_name, logging.INFO)

    fmt = "%(asctime)s %(levelname)s %(name)s: %(message)s"
    datefmt = "%Y-%m-%d %H:%M:%S"
    formatter = _RedactingFormatter(_collect_redaction_values(config), fmt=fmt, datefmt=datefmt)

    handlers: list[logging.Handler] = []

    if config.get("console", True):
        console_handler = logging.StreamHandler()
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        handlers.append(console_handler)

    file_cfg = config.get("file", {})
    if file_cfg.get("enabled", False):
        path = file_cfg.get("path", "logs/groupwatch.log")
        if not os.path.isabs(path):
            path = os.path.join(settings.PROJECT_ROOT, path)
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        file_handler = RotatingFileHandler(
            path,
            maxBytes=int(file_cfg.get("max_bytes", 5 * 1024 * 1024)),
            backupCount=int(file_cfg.get("backup_count", 5)),
            encoding="utf-8",
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    if not handlers:
        return

    logging.basicConfig(level=level, handlers=handlers)


def _open_storage() -> SQLiteStorage:
    storage = SQLiteStorage(settings.DB_PATH)
    storage.init_db()
    return storage


def _open_config_store() -> JsonConfigStore:
    load_dotenv()
    return JsonConfigStore(settings.CONFIG_PATH, env_credential=os.getenv("AI_API_KEY"))


def _build_notifier(client: Any) -> IdempotentNotifier:
    # The notification adapter is picked from configuration so the core
    # pipeline never sees delivery details.
    method = settings.NOTIFICATION_METHOD
    if method == "bot":
        bot_token = os.getenv("BOT_API")
        if not bot_token:
            raise RuntimeError("BOT_API is required when notification_method=bot")
        if not settings.BOT_CHAT_ID:
            raise RuntimeError("notifications.bot_chat_id is required for bot notifications")
        return TelegramBotNotifier(bot_token, str(settings.BOT_CHAT_ID), settings.SNIPPET_CHARS)
    if method == "saved_messages":
        if client is None:
            raise RuntimeError("saved_messages notifications need a connected Telegram client")
        return TelegramSavedMessagesNotifier(client, settings.SNIPPET_CHARS)
    if method == "log":
        return LogNotifier(settings.SNIPPET_CHARS)
    raise RuntimeError("notification_method must be 'saved_messages', 'bot' or 'log'")


def _purge_on_startup(storage: SQLiteStorage) -> None:
    if not settings.RETENTION_DAYS:
        return
    cutoff = datetime.now().astimezone() - timedelta(days=settings.RETENTION_DAYS)
    removed = storage.delete_older_than(cutoff)
    logging.getLogger(__name__).info("Retention cleanup removed %s messages", removed)


def _run() -> None:
    _print_banner()
    _configure_logging()
    logger = logging.getLogger(__name__)

    logger.info("Starting groupwatch")

    storage = _open_storage()
    _purge_on_startup(storage)

    config_store = _open_config_store()
    config = config_store.get()
    logger.info(
        "Classification mode %s with %s rules (AI %s)",
        config.mode.value,
        len(config.rules),
        "configured" if config.ai_configured else "not configured",
    )

    client = build_client()
    client.loop.run_until_complete(client.connect())
    client.loop.run_until_complete(authorize(client))

    notifier = _build_notifier(client)
    logger.info("Selected notification method - %s", settings.NOTIFICATION_METHOD)

    ai = ChatCompletionsClient(timeout=settings.AI_TIMEOUT_SECONDS)
    pipeline = IngestionPipeline(
        config_store=config_store,
        classifier=ImportanceClassifier(ai),
        storage=storage,
        notifier=notifier,
        dedup=DedupCache(settings.DEDUP_CAPACITY),
        rate_limiter=RateLimiter(settings.RATE_MIN_INTERVAL_MS / 1000.0),
    )
    pipeline.bind(client.loop)

    aggregator = DailyAggregator(
        storage=storage,
        notifier=notifier,
        config_store=config_store,
        ai=ai,
        scheduler=AsyncioDailyScheduler(loop=client.loop),
        digest_time=settings.DIGEST_TIME,
        retention_days=settings.RETENTION_DAYS,
    )
    if settings.DIGEST_ENABLED:
        aggregator.start()

    resolver = GroupTitleResolver(client)

    # Single handler keeps Telethon integration minimal; all filtering is
    # deferred to the core pipeline.
    @client.on(events.NewMessage(incoming=True))
    async def handler(event) -> None:
        try:
            if not event.is_group:
                return
            raw = await build_raw_event(event.message, resolver)
            if raw is None:
                return
            pipeline.submit(raw.text, raw.group_hint, raw.received_at)
        except Exception:
            logger.exception("Error while handling incoming message")

    client.start()
    logger.info("Client connected. Listening for group messages...")
    try:
        client.run_until_disconnected()
    finally:
        aggregator.stop()
        client.loop.run_until_complete(pipeline.drain())
        client.loop.run_until_complete(ai.close())
        logger.info("Stopped. Pipeline stats: %s", dict(pipeline.stats))


def _parse_day(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"expected YYYY-MM-DD, got {value!r}") from exc


def _digest(day: Optional[date]) -> None:
    _configure_logging()
    storage = _open_storage()
    config_store = _open_config_store()

    client = build_client() if settings.NOTIFICATION_METHOD == "saved_messages" else None

    async def _run_digest() -> None:
        if client is not None:
            await client.connect()
            await authorize(client)
        ai = ChatCompletionsClient(timeout=settings.AI_TIMEOUT_SECONDS)
        aggregator = DailyAggregator(
            storage=storage,
            notifier=_build_notifier(client),
            config_store=config_store,
            ai=ai,
            retention_days=settings.RETENTION_DAYS,
        )
        try:
            summary = await aggregator.run(day or date.today())
        finally:
            await ai.close()
            if client is not None:
                await client.disconnect()
        print(f"{summary.date.isoformat()}: {summary.total_important} important messages")
        for entry in summary.per_group:
            print(f"  {entry.group} ({entry.count}): {entry.summary}")

    if client is not None:
        client.loop.run_until_complete(_run_digest())
    else:
        asyncio.run(_run_digest())


def _stats() -> None:
    storage = _open_storage()
    print(f"messages: {storage.count()}")
    print(f"important: {storage.count_important()}")


def _purge(days: Optional[int], wipe: bool) -> None:
    storage = _open_storage()
    if wipe:
        removed = storage.delete_all()
    else:
        keep = days if days is not None else settings.RETENTION_DAYS
        cutoff = datetime.now().astimezone() - timedelta(days=keep)
        removed = storage.delete_older_than(cutoff)
    print(f"Removed {removed} messages")


async def _list_groups(client) -> None:
    found = False
    async for dialog in client.iter_dialogs():
        if not dialog.is_group:
            continue
        found = True
        print(f"{dialog.name} | chat_id:{dialog.id}")
    if not found:
        print("No group chats found for this account.")


def _groups() -> None:
    _print_banner()
    client = build_client()

    async def _run_groups() -> None:
        await client.connect()
        if not await client.is_user_authorized():
            print("Authorization required. Starting login...")
            await authorize(client)
        await _list_groups(client)
        await client.disconnect()

    client.loop.run_until_complete(_run_groups())


def main(argv: Optional[list[str]] = None) -> None:
    parser = argparse.ArgumentParser(prog="groupwatch")
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("run", help="Start the watcher and the daily digest")
    digest_parser = subparsers.add_parser("digest", help="Build and send a digest now")
    digest_parser.add_argument("--date", type=_parse_day, default=None, help="Day as YYYY-MM-DD")
    subparsers.add_parser("stats", help="Show stored message counts")
    purge_parser = subparsers.add_parser("purge", help="Delete stored messages")
    purge_group = purge_parser.add_mutually_exclusive_group()
    purge_group.add_argument("--days", type=int, default=None, help="Keep only the last N days")
    purge_group.add_argument("--all", action="store_true", help="Delete every stored message")
    subparsers.add_parser("groups", help="List group chats and their titles for monitored_groups")

    args = parser.parse_args(argv)
    if args.command == "digest":
        _digest(args.date)
        return
    if args.command == "stats":
        _stats()
        return
    if args.command == "purge":
        _purge(args.days, args.all)
        return
    if args.command == "groups":
        _groups()
        return
    _run()


if __name__ == "__main__":
    main()
