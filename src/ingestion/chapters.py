"""Chapter number parsing and gap detection."""

import re
from decimal import Decimal, InvalidOperation
from typing import Iterable, Union

from .adapter import ChapterRef

_CHAPTER_NUMBER_RE = re.compile(r"chapter\s*(\d+(?:\.\d+)*)", re.IGNORECASE)

Number = Union[Decimal, int, float, str]


def normalize_number(value: Number) -> Decimal:
    """Return a canonical Decimal so that 10, "10", 10.0 and "10.00" compare and print alike."""
    try:
        number = Decimal(str(value).strip())
    except InvalidOperation:
        return Decimal(0)

    if not number.is_finite():
        return Decimal(0)
    if number == number.to_integral_value():
        return number.quantize(Decimal(1))
    return number.normalize()


def parse_chapter_number(text: str) -> Decimal:
    """Extract the chapter number from labels like "Chapter 10.5 - End".

    Labels without a parsable number map to 0.
    """
    match = _CHAPTER_NUMBER_RE.search(text or "")
    if not match:
        return Decimal(0)
    # "1.2.3" style labels keep only the leading decimal
    head = ".".join(match.group(1).split(".")[:2])
    return normalize_number(head)


def format_number(number: Number) -> str:
    return str(normalize_number(number))


def diff_chapters(
    remote: Iterable[ChapterRef],
    ingested: Iterable[Number],
    blacklist: Iterable[Number] = (),
) -> list[ChapterRef]:
    """Return remote chapters missing from the catalog, oldest first.

    Chapters whose number is already ingested or blacklisted are dropped.
    The sort is stable, so duplicates keep their scrape order.
    """
    excluded = {normalize_number(n) for n in ingested}
    excluded.update(normalize_number(n) for n in blacklist)

    remaining = [
        chapter for chapter in remote
        if normalize_number(chapter.number) not in excluded
    ]
    return sorted(remaining, key=lambda chapter: normalize_number(chapter.number))
