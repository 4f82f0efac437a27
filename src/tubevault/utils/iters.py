from __future__ import annotations

from typing import Iterable, Iterator, TypeVar

T = TypeVar("T")


def repeat_last(items: Iterable[T]) -> Iterator[T]:
    """Yield ``items``, then keep yielding the last one forever (nothing if empty)."""
    last_set = False
    last = None
    for item in items:
        last, last_set = item, True
        yield item
    if not last_set:
        return
    while True:
        yield last
