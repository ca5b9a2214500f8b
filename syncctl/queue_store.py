import uuid
from typing import Any, List, Optional

from .repository import OptionStore


class QueueStore:
    """Ordered, batch-persisted queue of work items for one job action.

    Items are staged in memory with push() and written as one segment per
    save(). Segments are consumed oldest first, each in its own order.
    """

    def __init__(self, store: OptionStore, action: str):
        self.store = store
        self.action = action
        self.prefix = f"{action}_batch_"
        self._buffer: List[Any] = []

    def _segment_key(self) -> str:
        return self.prefix + uuid.uuid4().hex

    def push(self, item: Any) -> "QueueStore":
        self._buffer.append(item)
        return self

    def pending(self) -> int:
        return len(self._buffer)

    def save(self) -> "QueueStore":
        if self._buffer:
            self.store.update(self._segment_key(), list(self._buffer))
        self._buffer = []
        return self

    def _head_segment(self):
        while True:
            head = self.store.first(self.prefix)
            if head is None or head[1]:
                return head
            self.store.delete(head[0])

    def peek_next(self) -> Optional[Any]:
        head = self._head_segment()
        if head is None:
            return None
        return head[1][0]

    def remove_next(self) -> bool:
        head = self._head_segment()
        if head is None:
            # cleared under us by stop()
            return False
        key, items = head
        rest = items[1:]
        if rest:
            self.store.update(key, rest)
        else:
            self.store.delete(key)
        return True

    def dequeue_next(self) -> Optional[Any]:
        item = self.peek_next()
        if item is not None:
            self.remove_next()
        return item

    def segments(self) -> List[List[Any]]:
        return [items for _, items in self.store.list(self.prefix) if items]

    def size(self) -> int:
        return sum(len(items) for items in self.segments())

    def is_empty(self) -> bool:
        return self.peek_next() is None

    def clear(self) -> int:
        self._buffer = []
        return self.store.delete_prefix(self.prefix)
