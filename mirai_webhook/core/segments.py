# mirai_webhook/core/segments.py
"""
Content mini-markup.

A notification ``content`` is a ``|``-separated list of pieces. Each piece
may carry a case-insensitive type prefix:

    txt:<text>      plain text (also the default when no prefix matches)
    img:<url>       image by URL
    at:<qq>         mention a user
    face:<id|name>  emoticon

``||`` is an escaped pipe: it never splits and is kept as-is.

Example::

    >>> parse_content("txt:disk full|img:https://x/y.png|at:10001")
    (Text(text='disk full'), Image(url='https://x/y.png'), At(target='10001'))
"""
from __future__ import annotations

import re
from datetime import datetime

from mirai_webhook.core.domain import Face, Image, At, Message, Segment, Text, is_decimal_number

# A lone pipe splits; a doubled one is literal.
_SPLIT_RE = re.compile(r"(?<!\|)\|(?!\|)")

# Checked in this order, first match wins.
_PREFIXES: tuple[tuple[str, re.Pattern[str]], ...] = tuple(
    (name, re.compile(rf"{name}:(.*)\Z", re.IGNORECASE | re.DOTALL))
    for name in ("txt", "img", "at", "face")
)


def _parse_piece(piece: str) -> Segment:
    for name, pattern in _PREFIXES:
        match = pattern.match(piece)
        if not match:
            continue
        rest = match.group(1)
        if name == "txt":
            return Text(rest)
        if name == "img":
            return Image(rest)
        if name == "at":
            return At(rest)
        face_id = int(rest) if is_decimal_number(rest) else None
        return Face(face_id=face_id, name=rest)
    return Text(piece)


def parse_content(content: str) -> Message:
    """Parse ``content`` into an ordered tuple of segments. Never raises."""
    return tuple(_parse_piece(piece) for piece in _SPLIT_RE.split(content or ""))


def format_timestamp(now: datetime) -> str:
    """``2024/1/5 08:03:09`` -- 24-hour clock, no zero padding on the date."""
    return f"{now.year}/{now.month}/{now.day} {now:%H:%M:%S}"


def build_message(title: str, content: str, now: datetime | None = None) -> Message:
    """Header line with the local time and title, then the parsed content."""
    now = now or datetime.now()
    header = Text(f"[{format_timestamp(now)}] {title}\n\n")
    return (header, *parse_content(content))
