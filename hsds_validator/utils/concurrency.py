"""
Bounded thread pool helpers
"""

from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable, List, Optional, Sequence, TypeVar

T = TypeVar('T')
R = TypeVar('R')


def map_in_order(func: Callable[[T], R],
                 items: Sequence[T],
                 max_workers: int = 1,
                 on_complete: Optional[Callable[[], None]] = None) -> List[R]:
    """
    Apply func to every item, optionally in a bounded thread pool

    Results are returned in input order regardless of completion order.
    Exceptions raised by func propagate; callers that need isolation must
    catch inside func.

    Args:
        func: Function applied to each item
        items: Input sequence
        max_workers: Pool size (1 = run sequentially in the calling thread)
        on_complete: Called once after each item finishes
    """
    results: List[Optional[R]] = [None] * len(items)

    if max_workers <= 1 or len(items) <= 1:
        for index, item in enumerate(items):
            results[index] = func(item)
            if on_complete:
                on_complete()
        return results

    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        futures = {executor.submit(func, item): index for index, item in enumerate(items)}
        for future in as_completed(futures):
            results[futures[future]] = future.result()
            if on_complete:
                on_complete()

    return results
