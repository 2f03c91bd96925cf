"""CLI for the optimistic timeline store."""

import argparse
import asyncio
import sys
from contextlib import asynccontextmanager

from rich.table import Table

from common.env import env
from common.logger import console, error, get_logger, progress, setup_logging, success, warning

from .clients import MemoAPIClient
from .models import InterviewAnswerPayload, ItemStatus, ItemType, TextPayload, VoicePayload
from .storage import get_storage
from .store import StoreSettings, TimelineStore

logger = get_logger(__name__)


@asynccontextmanager
async def open_store(start: bool = True):
    """Compose a store from environment configuration.

    With start=False the persisted state is only loaded: no retry cycle runs
    and nothing is uploaded.
    """
    client = MemoAPIClient(env.api_base_url(), timeout=env.http_timeout())
    with get_storage() as storage, client:
        store = TimelineStore(storage, client, settings=StoreSettings.from_env())
        if not start:
            store.load()
            yield store
            return
        async with store:
            yield store


def _summary(item, width: int = 48) -> str:
    payload = item.payload
    text = getattr(payload, "content", None) or getattr(payload, "title", None)
    if not text and isinstance(payload, VoicePayload):
        text = item.transcript or payload.audio_path
    text = (text or "").replace("\n", " ")
    return text if len(text) <= width else text[: width - 1] + "…"


def print_items(items) -> None:
    table = Table(show_header=True, header_style="bold")
    table.add_column("ID")
    table.add_column("Type")
    table.add_column("Status")
    table.add_column("Retries", justify="right")
    table.add_column("Book")
    table.add_column("Created")
    table.add_column("Content")
    for item in items:
        status = item.status.value
        if item.status == ItemStatus.ERROR:
            status += " (retrying)" if item.will_retry else " (failed)"
        table.add_row(
            item.id,
            item.type,
            status,
            str(item.retry_count),
            "yes" if item.add_to_book else "",
            item.created_at,
            _summary(item),
        )
    console.print(table)


def print_stats(stats) -> None:
    progress("Timeline Status")
    progress("=" * 30)
    progress(f"  Total:          {stats.total:5d}")
    progress(f"  Pending:        {stats.pending:5d}")
    progress(f"  Uploading:      {stats.uploading:5d}")
    progress(f"  Transcribing:   {stats.transcribing:5d}")
    progress(f"  Done:           {stats.done:5d}")
    progress(f"  Errors:         {stats.errors:5d}")
    progress(f"  In book:        {stats.in_book:5d}")
    progress(f"  Retry queue:    {stats.retry_queue_size:5d}")


async def _wait(store: TimelineStore, timeout: float) -> bool:
    try:
        await asyncio.wait_for(store.wait_idle(), timeout)
    except asyncio.TimeoutError:
        warning(f"Still working after {timeout:.0f}s; remaining work resumes on next start")
        return False
    return True


async def _add(args, payload) -> int:
    async with open_store() as store:
        item = store.add_pending_item(payload, add_to_book=args.book)
        progress(f"Queued {item.type} item {item.id}")
        if args.no_wait:
            return 0

        await _wait(store, args.timeout)
        # The id changes once the server confirms the item
        current = store.get_item(item.id) or next(
            (i for i in store.items if i.created_at == item.created_at and i.payload == item.payload),
            None,
        )
        if current is None:
            warning("Item disappeared before upload finished")
            return 1
        if current.status == ItemStatus.ERROR:
            hint = "will retry" if current.will_retry else "not retrying"
            error(f"Upload of {current.id} failed: {current.error} ({hint})")
            return 1
        success(f"{current.id} is {current.status.value}")
        return 0


async def cmd_add_text(args) -> int:
    """Add a text memo."""
    return await _add(args, TextPayload(content=args.content, title=args.title))


async def cmd_add_voice(args) -> int:
    """Add a voice memo from a local recording."""
    return await _add(args, VoicePayload(audio_path=args.audio_path, title=args.title))


async def cmd_add_answer(args) -> int:
    """Add an interview answer."""
    payload = InterviewAnswerPayload(
        session_id=args.session,
        question_id=args.question,
        content=args.content,
        answer_type=args.answer_type,
        audio_path=args.audio_path,
    )
    return await _add(args, payload)


async def cmd_list(args) -> int:
    """List stored items."""
    async with open_store(start=False) as store:
        items = store.get_items(type=args.type, status=args.status, add_to_book=args.book)
        if not items:
            warning("No items match")
            return 0
        print_items(items)
    return 0


async def cmd_stats(args) -> int:
    """Show counts per status."""
    async with open_store(start=False) as store:
        print_stats(store.get_stats())
    return 0


async def cmd_retry(args) -> int:
    """Retry one failed item now."""
    async with open_store() as store:
        if not store.retry_item(args.item_id):
            error(f"{args.item_id} is not a failed item")
            return 1
        await _wait(store, args.timeout)
        print_stats(store.get_stats())
    return 0


async def cmd_retry_failed(args) -> int:
    """Retry every failed item now."""
    async with open_store() as store:
        count = store.retry_failed()
        progress(f"Retrying {count} items")
        await _wait(store, args.timeout)
        print_stats(store.get_stats())
    return 0


async def cmd_delete(args) -> int:
    """Delete an item."""
    async with open_store(start=False) as store:
        if store.delete_item(args.item_id):
            success(f"Deleted {args.item_id}")
        else:
            warning(f"No item {args.item_id}")
    return 0


async def cmd_clear(args) -> int:
    """Delete every item."""
    if not args.yes:
        error("Refusing to clear the timeline without --yes")
        return 1
    async with open_store(start=False) as store:
        count = len(store.items)
        store.clear()
        success(f"Removed {count} items")
    return 0


async def cmd_sync(args) -> int:
    """Run retry passes until the retry queue drains or the timeout expires."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + args.timeout

    async with open_store() as store:
        while True:
            if not await _wait(store, max(0.0, deadline - loop.time())):
                break
            next_at = store.next_retry_at()
            if next_at is None:
                success("Retry queue is empty")
                break
            delay = max(0.0, (next_at - store.clock()).total_seconds())
            if loop.time() + delay > deadline:
                warning(f"Next retry is due at {next_at.isoformat()}, past the timeout")
                break
            progress(f"Next retry in {delay:.1f}s")
            await asyncio.sleep(delay)
            store.process_retry_queue()

        print_stats(store.get_stats())
    return 0


COMMANDS = {
    "add-text": cmd_add_text,
    "add-voice": cmd_add_voice,
    "add-answer": cmd_add_answer,
    "list": cmd_list,
    "stats": cmd_stats,
    "retry": cmd_retry,
    "retry-failed": cmd_retry_failed,
    "delete": cmd_delete,
    "clear": cmd_clear,
    "sync": cmd_sync,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Capture and upload life story memories with offline retry",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--log-level", default="INFO", help="Logging level (default: INFO)")

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    def add_wait_options(sub):
        sub.add_argument(
            "--timeout",
            type=float,
            default=60.0,
            help="Seconds to wait for uploads to finish (default: 60)",
        )

    def add_item_options(sub):
        sub.add_argument("--title", default=None, help="Optional title")
        sub.add_argument("--book", action="store_true", help="Include in the book")
        sub.add_argument(
            "--no-wait", action="store_true", help="Return once the item is queued"
        )
        add_wait_options(sub)

    text_parser = subparsers.add_parser("add-text", help="Add a text memo")
    text_parser.add_argument("content", help="Memo text")
    add_item_options(text_parser)

    voice_parser = subparsers.add_parser(
        "add-voice",
        help="Add a voice memo",
        description=(
            "Upload a recording and wait for its transcription.\n\n"
            "Examples:\n"
            "  timeline add-voice recordings/grandma.wav --title 'Grandma' --book\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    voice_parser.add_argument("audio_path", help="Path to the WAV recording")
    add_item_options(voice_parser)

    answer_parser = subparsers.add_parser("add-answer", help="Add an interview answer")
    answer_parser.add_argument("content", help="Answer text")
    answer_parser.add_argument("--session", required=True, help="Interview session id")
    answer_parser.add_argument("--question", required=True, help="Question id")
    answer_parser.add_argument(
        "--answer-type", choices=["text", "voice"], default="text", help="Answer kind"
    )
    answer_parser.add_argument("--audio-path", default=None, help="Recording for voice answers")
    add_item_options(answer_parser)

    list_parser = subparsers.add_parser("list", help="List items, newest first")
    list_parser.add_argument("--type", choices=[t.value for t in ItemType], default=None)
    list_parser.add_argument("--status", choices=[s.value for s in ItemStatus], default=None)
    book_group = list_parser.add_mutually_exclusive_group()
    book_group.add_argument("--in-book", dest="book", action="store_const", const=True)
    book_group.add_argument("--not-in-book", dest="book", action="store_const", const=False)
    list_parser.set_defaults(book=None)

    subparsers.add_parser("stats", help="Show counts per status")

    retry_parser = subparsers.add_parser("retry", help="Retry a failed item now")
    retry_parser.add_argument("item_id", help="Item id")
    add_wait_options(retry_parser)

    retry_failed_parser = subparsers.add_parser("retry-failed", help="Retry all failed items")
    add_wait_options(retry_failed_parser)

    delete_parser = subparsers.add_parser("delete", help="Delete an item")
    delete_parser.add_argument("item_id", help="Item id")

    clear_parser = subparsers.add_parser("clear", help="Delete every item")
    clear_parser.add_argument("--yes", action="store_true", help="Confirm")

    sync_parser = subparsers.add_parser(
        "sync", help="Process the retry queue until it is empty"
    )
    sync_parser.add_argument(
        "--timeout", type=float, default=300.0, help="Give up after this many seconds"
    )

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the timeline CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    setup_logging(level=args.log_level)
    logger.debug(f"Running {args.command} against {env.api_base_url()}")
    return asyncio.run(COMMANDS[args.command](args))


if __name__ == "__main__":
    sys.exit(main())
