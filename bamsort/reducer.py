from typing import Iterable, Iterator, Tuple, TypeVar

T = TypeVar("T")


def identity_reduce(pairs: Iterable[Tuple[int, T]]) -> Iterator[T]:
    """Re-emit key-sorted records unchanged, dropping the routing key."""
    for _key, record in pairs:
        yield record
