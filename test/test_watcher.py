"""
Terminal watcher: board rendering and the optimistic `set` command.
"""
import asyncio

from orderline.clients import AdminBoard
from orderline.watcher import change_order_status, parse_args, render_board


def board_with(broadcaster, *orders) -> AdminBoard:
    board = AdminBoard(broadcaster, demo_fallback=False)
    board.orders = list(orders)
    return board


def test_render_board_lists_orders_by_status(broadcaster):
    board = board_with(broadcaster, {"shortId": "ALP-000001", "status": "ready", "name": "Maria", "total": 12.5})
    text = render_board(board)
    assert "== Orders: 1 total ==" in text
    assert "== Ready (1) ==" in text
    assert "ALP-000001 | Maria" in text
    assert "12.50" in text


def test_render_board_tolerates_unknown_status(broadcaster):
    board = board_with(broadcaster, {"shortId": "ALP-000001", "status": "shipped"})
    text = render_board(board)
    assert "== shipped (1) ==" in text


def test_set_command_args():
    args = parse_args(["set", "ALP-000001", "ready", "--token", "t"])
    assert (args.mode, args.short_id, args.status, args.token) == ("set", "ALP-000001", "ready", "t")


async def test_change_order_status_redraws_optimistic_then_final(broadcaster, capsys):
    board = board_with(broadcaster, {"shortId": "ALP-000001", "status": "received"})

    async def patcher(short_id, status):
        await asyncio.sleep(0.01)
        return {"shortId": short_id, "status": status, "readyAt": "2026-10-19T10:00:00+00:00"}

    assert await change_order_status(board, "ALP-000001", "ready", patcher)
    out = capsys.readouterr().out
    assert out.count("== Ready (1) ==") == 2
    assert board.orders[0]["readyAt"]


async def test_change_order_status_rolls_back(broadcaster, capsys):
    board = board_with(broadcaster, {"shortId": "ALP-000001", "status": "received"})

    async def refuse(short_id, status):
        await asyncio.sleep(0.01)
        raise ConnectionError("403 Forbidden")

    assert not await change_order_status(board, "ALP-000001", "ready", refuse)
    assert board.orders == [{"shortId": "ALP-000001", "status": "received"}]
    frames = capsys.readouterr().out.split("\033[2J\033[H")
    assert "== Ready (1) ==" in frames[1]
    assert "== Received (1) ==" in frames[2]
