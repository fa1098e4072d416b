from __future__ import annotations

import sys
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, Sequence

from dm_core.types import BookView, Level

HEADER = "BID_SIZE  BID_PRICE ASK_PRICE   ASK_SIZE"
_ROW_FMT = "{:<10}{:>10} {:<10}{:>10}"
_CENTS = Decimal("0.01")


def format_value(value) -> str:
    """Two decimals, half-up, plain notation (never exponent form)."""
    dec = value if isinstance(value, Decimal) else Decimal(str(value))
    return f"{dec.quantize(_CENTS, rounding=ROUND_HALF_UP):f}"


def format_row(bid: Level | None, ask: Level | None) -> str:
    bid_qty, bid_px = (format_value(bid.qty), format_value(bid.price)) if bid else ("", "")
    ask_px, ask_qty = (format_value(ask.price), format_value(ask.qty)) if ask else ("", "")
    return _ROW_FMT.format(bid_qty, bid_px, ask_px, ask_qty)


def format_depth_table(bids: Sequence[Level], asks: Sequence[Level], depth: int) -> str:
    lines = [HEADER]
    for i in range(max(0, depth)):
        if i >= len(bids) and i >= len(asks):
            break
        bid = bids[i] if i < len(bids) else None
        ask = asks[i] if i < len(asks) else None
        lines.append(format_row(bid, ask))
    return "\n".join(lines)


def render_view(view: BookView, depth: int) -> str:
    return format_depth_table(view.bids, view.asks, depth)


def print_reporter(depth: int, stream=None) -> Callable[[BookView], None]:
    def _report(view: BookView) -> None:
        out = stream or sys.stdout
        out.write(render_view(view, depth) + "\n")
        out.flush()

    return _report
