from abc import abstractmethod
from collections.abc import Callable
from typing import Any, Optional, Protocol, TypeVar


class Comparable(Protocol):
    @abstractmethod
    def __lt__(self, other: Any, /) -> bool: ...


T = TypeVar('T', bound=Comparable)

# three-way comparison: negative if a < b, 0 if equal, positive if a > b
CompareFn = Callable[[Any, Any], int]


def compare(a: Optional[T], b: Optional[T]) -> int:
    """Three-way compare two keys, ordering None after every present value. Two Nones compare equal.

    Only __lt__ is required of the keys; a value that is neither less nor greater is treated as equal.
    """
    if a is None:
        return 0 if b is None else 1
    if b is None:
        return -1
    if a < b:
        return -1
    if b < a:
        return 1
    return 0


def null_last(compare_fn: CompareFn) -> CompareFn:
    """Wrap a three-way comparator so None sorts after everything else before compare_fn is consulted."""
    def wrapped(a, b) -> int:
        if a is None or b is None:
            return compare(a, b)
        return compare_fn(a, b)
    wrapped.__name__ = f'null_last({getattr(compare_fn, "__name__", repr(compare_fn))})'
    return wrapped

