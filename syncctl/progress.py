"""
Resumable progress for id-range syncs.

A checkpoint is the pair (first_processed, last_processed) of numeric item
ids, stored per sync mode. Items are walked in descending id order, so
`last_processed` normally only moves down. The failure ledger keeps the ids
that could not be synced per mode until a later run fixes them.
"""

from typing import Iterable, List, Optional, Tuple

from .repository import OptionStore

KNOWN_MODES = ("other", "cli_images", "cli_other")
DEFAULT_MODE = "images"


def normalize_mode(mode: str) -> str:
    return mode if mode in KNOWN_MODES else DEFAULT_MODE


def _first_key(mode: str) -> str:
    return f"syncctl_{mode}_first_processed"


def _last_key(mode: str) -> str:
    return f"syncctl_{mode}_last_processed"


def _fails_key(mode: str) -> str:
    return f"syncctl_failed_{mode}"


# ---------- Failure ledger ----------
def sync_store_failed_item(store: OptionStore, item_id, mode: str):
    mode = normalize_mode(mode)
    fails = store.get(_fails_key(mode)) or []
    if item_id not in fails:
        fails.append(item_id)
    store.update(_fails_key(mode), fails)


def sync_maybe_fix_failed_item(store: OptionStore, mode: str, item_id) -> bool:
    """Drop item_id from the ledger; True if it was there."""
    mode = normalize_mode(mode)
    fails = store.get(_fails_key(mode)) or []
    if item_id not in fails:
        return False
    store.update(_fails_key(mode), [f for f in fails if f != item_id])
    return True


def sync_get_fails(store: OptionStore, mode: str) -> list:
    return store.get(_fails_key(normalize_mode(mode))) or []


# ---------- Checkpoint ----------
def sync_store_current_progress(store: OptionStore, mode: str, item_id: int, cli: bool = False):
    mode = normalize_mode(mode)
    item_id = int(item_id)

    if store.get(_first_key(mode)) is None:
        store.add(_first_key(mode), item_id)

    last = store.get(_last_key(mode))
    if last is None or item_id < int(last) or cli:
        store.update(_last_key(mode), item_id)


def sync_retrieve_current_progress(store: OptionStore, mode: str) -> Optional[Tuple[int, int]]:
    mode = normalize_mode(mode)
    first = store.get(_first_key(mode))
    last = store.get(_last_key(mode))
    if first is None or last is None:
        return None
    return int(first), int(last)


def sync_reset_current_progress(store: OptionStore, mode: str):
    mode = normalize_mode(mode)
    store.delete(_first_key(mode))
    store.delete(_last_key(mode))


def sync_get_non_processed_ids(
    store: OptionStore,
    mode: str,
    ids: Iterable[int],
    continue_: bool = False,
    start_from: int = 0,
) -> List[int]:
    """Ids still to sync. Continuing keeps everything outside the covered range.

    `start_from` is the value shown to operators, one below the real boundary,
    hence the +1 before it replaces the stored `last_processed`.
    """
    ids = [int(i) for i in ids]

    if continue_:
        progress = sync_retrieve_current_progress(store, mode)
        if progress is not None:
            first, last = progress
            if start_from:
                last = int(start_from) + 1
            return [i for i in ids if i > first or i < last]

    sync_reset_current_progress(store, mode)
    return ids
