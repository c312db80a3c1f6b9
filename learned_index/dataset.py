import heapq
import logging
from typing import Iterable, List, Optional, Tuple

import numpy as np

from .buffer import Record
from .utils import key_to_float

logger = logging.getLogger(__name__)


def _sort_key(record: Record) -> float:
    return key_to_float(record[0])


class OrderedDataset:
    """Sorted, model-indexed snapshot of every merged record.

    Instances are never mutated once built; a merge produces a new dataset so
    a published snapshot stays consistent for concurrent readers.
    """

    def __init__(self, records: Iterable[Record] = ()):
        self.records: List[Record] = list(records)
        self.keys = np.array([_sort_key(record) for record in self.records], dtype=np.float64)

    def merge(self, new_records: Iterable[Record]) -> 'OrderedDataset':
        """Return a new dataset holding these records plus ``new_records``.

        Ties keep prior order: existing records first, then new records in
        insertion order.
        """
        incoming = sorted(new_records, key=_sort_key)
        if not incoming:
            return OrderedDataset(self.records)
        logger.debug(f"Merging {len(incoming)} records into dataset of {len(self.records)}")
        merged = heapq.merge(self.records, incoming, key=_sort_key)
        return OrderedDataset(merged)

    def __len__(self) -> int:
        return len(self.records)

    def is_empty(self) -> bool:
        return len(self.records) == 0

    def is_sorted(self) -> bool:
        return bool(np.all(self.keys[1:] >= self.keys[:-1]))

    def record_at(self, position: int) -> Record:
        return self.records[position]

    def locate(self, key: float, position: int, window: int) -> Tuple[Optional[int], bool]:
        """Find the leftmost position holding ``key``.

        Searches ``[position - window, position + window]`` first. If the key
        lies outside that slice's key range, gallops away from the slice edge
        until the key is bracketed.

        Returns:
        --------
        Tuple[Optional[int], bool]
            The position (None when absent) and whether the window was widened
        """
        n = len(self.records)
        if n == 0:
            return None, False

        position = max(0, min(n - 1, position))
        left = max(0, position - window)
        right = min(n, position + window + 1)
        widened = False

        # Equal keys may continue to the left of the window, so gallop on <=
        if left > 0 and key <= self.keys[left]:
            left, right = self._gallop_left(key, left)
            widened = True
        elif right < n and key > self.keys[right - 1]:
            left, right = self._gallop_right(key, right - 1)
            widened = True

        idx = left + int(np.searchsorted(self.keys[left:right], key, side='left'))
        if idx < n and self.keys[idx] == key:
            return idx, widened
        return None, widened

    def _gallop_left(self, key: float, start: int) -> Tuple[int, int]:
        """Bracket the first slot >= key, given keys[start] >= key."""
        bound = 1
        while start - bound >= 0 and self.keys[start - bound] >= key:
            bound *= 2
        return max(0, start - bound), start - bound // 2 + 1

    def _gallop_right(self, key: float, start: int) -> Tuple[int, int]:
        """Bracket the first slot >= key, given keys[start] < key."""
        n = len(self.records)
        bound = 1
        while start + bound < n and self.keys[start + bound] < key:
            bound *= 2
        return start + bound // 2, min(n, start + bound + 1)

    def get_memory_usage(self) -> int:
        """Approximate memory usage of the key array in bytes."""
        return int(self.keys.nbytes)

    def __iter__(self):
        return iter(self.records)

    def __repr__(self) -> str:
        return f"OrderedDataset(size={len(self.records)})"
