"""Item providers: turn operator input into the lists a sync job works on."""

import json
from pathlib import Path
from typing import Dict, Iterable, List


def read_path_list(path) -> List[str]:
    """One relative path per line; blank lines and '#' comments are ignored."""
    items = []
    for line in Path(path).read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        items.append(line)
    return items


def scan_folders(base, folders: Iterable[str]) -> List[str]:
    """Relative POSIX paths of every file under the given folders of `base`."""
    base = Path(base)
    found = set()
    for folder in folders:
        root = base / folder
        if not root.is_dir():
            raise ValueError(f"Not a directory: {root}")
        for p in root.rglob("*"):
            if p.is_file():
                found.add(p.relative_to(base).as_posix())
    return sorted(found)


def read_media_manifest(path) -> Dict[int, str]:
    """JSON object mapping media id -> relative file path."""
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError("Media manifest must be a JSON object of id -> path")
    try:
        return {int(k): str(v) for k, v in data.items()}
    except ValueError as e:
        raise ValueError(f"Media ids must be integers ({e})")


def remembered_items(store, action: str, default=None):
    """Provider reading the item snapshot saved for `action` by the CLI."""
    key = f"{action}_items"

    def provider():
        return store.get(key, default)

    return provider


def remember_items(store, action: str, items):
    store.update(f"{action}_items", items)
