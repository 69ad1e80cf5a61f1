"""
Terminal subscriber: mount the admin board or a customer tracker against a running deployment.
- board: snapshot from GET /api/orders (admin token), then the "orders" topic.
- track SHORTID: snapshot from GET /api/orders/{shortId}, then "order-{shortId}".
- set SHORTID STATUS: optimistic status change on the board, rolled back if the API refuses it.
Redraws on every event. --resync-seconds reloads the snapshot periodically to recover missed events.
Graceful shutdown on SIGTERM / SIGINT.
Run: python -m orderline.watcher board --token ... | python -m orderline.watcher track ALP-3F9C2A
"""
import argparse
import asyncio
import logging
import signal
import sys

import httpx

from orderline.broadcaster import Broadcaster
from orderline.clients import STATUS_LABELS, AdminBoard, CustomerTracker
from orderline.config import settings
from orderline.order_state import STATUSES
from orderline.redis_client import close_redis, get_redis

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s [%(levelname)s] %(message)s",
    stream=sys.stderr,
)
logger = logging.getLogger(__name__)

HTTP_TIMEOUT_SEC = 5.0


def board_loader(api_url: str, token: str | None):
    async def load() -> list[dict]:
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        async with httpx.AsyncClient(base_url=api_url, timeout=HTTP_TIMEOUT_SEC) as client:
            resp = await client.get("/api/orders", headers=headers)
            resp.raise_for_status()
            return resp.json()
    return load


def order_loader(api_url: str):
    async def load(short_id: str) -> dict | None:
        async with httpx.AsyncClient(base_url=api_url, timeout=HTTP_TIMEOUT_SEC) as client:
            resp = await client.get(f"/api/orders/{short_id}")
            if resp.status_code == 404:
                return None
            resp.raise_for_status()
            return resp.json()
    return load


def status_patcher(api_url: str, token: str | None):
    async def patch(short_id: str, status: str) -> dict:
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        async with httpx.AsyncClient(base_url=api_url, timeout=HTTP_TIMEOUT_SEC) as client:
            resp = await client.patch(f"/api/orders/{short_id}", json={"status": status}, headers=headers)
            resp.raise_for_status()
            return resp.json()
    return patch


def _format_table(headers: list[str], rows: list[list[str]]) -> str:
    widths = [len(h) for h in headers]
    for r in rows:
        for i, cell in enumerate(r):
            widths[i] = max(widths[i], len(cell))

    def fmt_row(cols: list[str]) -> str:
        return " | ".join(col.ljust(widths[i]) for i, col in enumerate(cols))
    sep = "-+-".join("-" * w for w in widths)
    return "\n".join([fmt_row(headers), sep, *(fmt_row(r) for r in rows)])


def render_board(board: AdminBoard) -> str:
    counts = board.counts()
    parts = [f"== Orders: {counts['all']} total =="]
    for status, orders in board.columns().items():
        rows = [
            [o.get("shortId", ""), o.get("name") or "", o.get("type") or "", f"{float(o.get('total') or 0):.2f}"]
            for o in orders
        ]
        table = _format_table(["ShortId", "Name", "Type", "Total"], rows) if rows else "<empty>"
        parts.append(f"\n== {STATUS_LABELS.get(status, status)} ({counts[status]}) ==\n{table}")
    return "\n".join(parts)


def render_tracker(tracker: CustomerTracker) -> str:
    header = f"== Order {tracker.short_id} =="
    if tracker.status is None:
        return f"{header}\n{tracker.message}"
    if tracker.is_canceled:
        return f"{header}\n[CANCELED] {tracker.message}"
    lines = [header, tracker.message, ""]
    for step in tracker.steps():
        mark = ">" if step.current else ("x" if step.done else " ")
        stamp = f"  {step.timestamp}" if step.timestamp and step.done else ""
        lines.append(f"[{mark}] {step.label}{stamp}")
    return "\n".join(lines)


def _redraw(client) -> None:
    text = render_board(client) if isinstance(client, AdminBoard) else render_tracker(client)
    print("\033[2J\033[H", end="")
    print(text, flush=True)


async def change_order_status(board: AdminBoard, short_id: str, status: str, patcher) -> bool:
    """Optimistic change from the board: redraw immediately, redraw again with the outcome."""
    task = asyncio.create_task(board.change_status(short_id, status, patcher))
    await asyncio.sleep(0)
    _redraw(board)
    ok = await task
    _redraw(board)
    if not ok:
        logger.error("Could not move %s to %s; board rolled back.", short_id, status)
    return ok


async def run_watcher(args: argparse.Namespace, shutdown_event: asyncio.Event) -> None:
    broadcaster = Broadcaster(await get_redis())
    if args.mode in ("board", "set"):
        demo = args.mode == "board" and args.demo
        client = AdminBoard(broadcaster, loader=board_loader(args.api_url, args.token), demo_fallback=demo)
    else:
        client = CustomerTracker(broadcaster, args.short_id, loader=order_loader(args.api_url))
    try:
        async with client.mount():
            logger.info("Subscribed to %s", ", ".join(client.topics))
            _redraw(client)
            if args.mode == "set":
                await change_order_status(client, args.short_id, args.status, status_patcher(args.api_url, args.token))
                return
            await client.run(shutdown_event, on_change=_redraw, resync_seconds=args.resync_seconds)
    finally:
        await close_redis()
        logger.info("Watcher stopped.")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="orderline.watcher")
    parser.add_argument("--api-url", default="http://localhost:8000")
    parser.add_argument("--resync-seconds", type=float, default=None)
    sub = parser.add_subparsers(dest="mode", required=True)
    board = sub.add_parser("board", help="admin board over the global topic")
    board.add_argument("--token", default=None, help="admin bearer token for the snapshot")
    board.add_argument("--demo", action="store_true", help="show demo orders when no snapshot is available")
    track = sub.add_parser("track", help="customer tracker for one order")
    track.add_argument("short_id")
    change = sub.add_parser("set", help="move one order to a new status from the admin board")
    change.add_argument("short_id")
    change.add_argument("status", choices=STATUSES)
    change.add_argument("--token", default=None, help="admin bearer token")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    shutdown_event = asyncio.Event()

    def on_signal():
        shutdown_event.set()

    loop = asyncio.new_event_loop()
    try:
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, on_signal)
    except NotImplementedError:
        signal.signal(signal.SIGTERM, lambda *a: shutdown_event.set())
        signal.signal(signal.SIGINT, lambda *a: shutdown_event.set())

    asyncio.set_event_loop(loop)
    try:
        loop.run_until_complete(run_watcher(args, shutdown_event))
    finally:
        loop.close()


if __name__ == "__main__":
    main()
