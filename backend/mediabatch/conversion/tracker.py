"""Per-item state and the transitions between states."""
import logging
import threading
import uuid
from typing import Iterable, Optional

from mediabatch.conversion.models import ConversionItem, ItemOutput, ItemStatus
from mediabatch.conversion.resize import resize_keep_aspect
from mediabatch.handles import HandleStore

logger = logging.getLogger("mediabatch.tracker")

# status -> statuses reachable from it
TRANSITIONS = {
    ItemStatus.IDLE: {ItemStatus.PROCESSING},
    ItemStatus.PROCESSING: {ItemStatus.DONE, ItemStatus.ERROR},
    # re-conversion restarts a finished item; nothing returns to idle
    ItemStatus.DONE: {ItemStatus.PROCESSING},
    ItemStatus.ERROR: {ItemStatus.PROCESSING},
}


class InvalidTransitionError(RuntimeError):
    pass


def new_item_id() -> str:
    return uuid.uuid4().hex[:9]


class ItemTracker:
    """Insertion-ordered items of one batch. Discard releases the item's handles."""

    def __init__(self, handles: HandleStore):
        self._handles = handles
        self._items: dict[str, ConversionItem] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, item_id: object) -> bool:
        return item_id in self._items

    def enqueue(
        self,
        filename: str,
        data: bytes,
        width: int,
        height: int,
        preview: Optional[str] = None,
    ) -> ConversionItem:
        item = ConversionItem(new_item_id(), filename, data, width, height, preview=preview)
        with self._lock:
            self._items[item.item_id] = item
        logger.info("Enqueued %s (%sx%s) as %s", filename, width, height, item.item_id)
        return item

    def get(self, item_id: str) -> Optional[ConversionItem]:
        return self._items.get(item_id)

    def require(self, item_id: str) -> ConversionItem:
        item = self._items.get(item_id)
        if item is None:
            raise KeyError(f"Unknown item: {item_id}")
        return item

    def items(self) -> list[ConversionItem]:
        return list(self._items.values())

    def ids(self) -> list[str]:
        return list(self._items)

    def pending(self) -> list[ConversionItem]:
        return [i for i in self._items.values() if i.status != ItemStatus.DONE]

    def completed(self) -> list[ConversionItem]:
        return [i for i in self._items.values() if i.status == ItemStatus.DONE]

    def select(self, item_ids: Optional[Iterable[str]] = None) -> list[str]:
        """Ids in enqueue order, restricted to item_ids when given."""
        if item_ids is None:
            return self.ids()
        wanted = set(item_ids)
        return [i for i in self._items if i in wanted]

    # Edits

    def set_dimension(self, item_id: str, dimension: str, value: int) -> ConversionItem:
        item = self.require(item_id)
        item.target_width, item.target_height = resize_keep_aspect(item.aspect_ratio, dimension, value)
        return item

    def set_keyword(self, item_id: str, keyword: str) -> ConversionItem:
        item = self.require(item_id)
        item.keyword = keyword or ""
        return item

    # Lifecycle

    def _move(self, item: ConversionItem, status: ItemStatus) -> None:
        if status not in TRANSITIONS[item.status]:
            raise InvalidTransitionError(
                f"Item {item.item_id}: cannot go from {item.status.value} to {status.value}"
            )
        item.status = status

    def start(self, item_id: str) -> ConversionItem:
        """Move to processing. Raises KeyError if the item was discarded."""
        with self._lock:
            item = self.require(item_id)
            self._move(item, ItemStatus.PROCESSING)
        item.error = None
        return item

    def complete(self, item_id: str, output: ItemOutput) -> ConversionItem:
        item = self.require(item_id)
        self._move(item, ItemStatus.DONE)
        previous = item.output
        item.output = output
        if previous is not None and previous.handle != output.handle:
            self._handles.revoke(previous.handle)
        return item

    def fail(self, item_id: str, message: str) -> ConversionItem:
        item = self.require(item_id)
        self._move(item, ItemStatus.ERROR)
        item.error = message
        if item.output is not None:
            self._handles.revoke(item.output.handle)
            item.output = None
        return item

    def discard(self, item_id: str) -> ConversionItem:
        """Remove the item in any state and release its preview and output."""
        with self._lock:
            item = self._items.pop(item_id, None)
        if item is None:
            raise KeyError(f"Unknown item: {item_id}")
        self._handles.revoke(item.preview)
        if item.output is not None:
            self._handles.revoke(item.output.handle)
        logger.info("Discarded %s (%s, was %s)", item.item_id, item.filename, item.status.value)
        return item

    def clear(self) -> None:
        for item_id in self.ids():
            self.discard(item_id)
