from typing import Any, Iterable, List, Optional, Tuple
import logging

logger = logging.getLogger(__name__)

Record = Tuple[Any, Any]


class OverflowBuffer:
    """Unsorted staging area for records inserted since the last retrain."""

    def __init__(self, max_size: int):
        self.max_size = max_size
        self._records: List[Record] = []

    def insert(self, key: Any, value: Any) -> bool:
        """Append a record. Returns True once the buffer exceeds its threshold."""
        self._records.append((key, value))
        logger.debug(f"Buffered key {key!r}. New size: {len(self._records)}/{self.max_size}")
        return len(self._records) > self.max_size

    def scan(self, key: Any) -> Optional[Record]:
        """Linear search for the first buffered record with this key."""
        # Iterate over the list object itself so a concurrent drain cannot shrink it mid-scan
        for record in self._records:
            if record[0] == key:
                return record
        return None

    def drain(self) -> List[Record]:
        """Return all buffered records in insertion order and empty the buffer."""
        records, self._records = self._records, []
        logger.debug(f"Drained {len(records)} records from overflow buffer")
        return records

    def restore(self, records: Iterable[Record]) -> None:
        """Put previously drained records back in front of newer inserts."""
        self._records = list(records) + self._records

    def is_empty(self) -> bool:
        """Check if buffer is empty."""
        return len(self._records) == 0

    def is_full(self) -> bool:
        """Check if buffer has crossed its retrain threshold."""
        return len(self._records) > self.max_size

    def get_size(self) -> int:
        """Get number of buffered records."""
        return len(self._records)

    def get_records(self) -> List[Record]:
        """Get a copy of the buffered records in insertion order."""
        return list(self._records)

    def __len__(self) -> int:
        return len(self._records)
