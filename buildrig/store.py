"""Persistent, file-locked storage of builder instances and the current selection."""

from __future__ import annotations

import contextlib
import hashlib
import json
import os
import shutil
import tempfile
from collections.abc import Iterator
from datetime import datetime, timezone
from pathlib import Path

from filelock import FileLock

from buildrig.localstate import LocalState
from buildrig.nodegroup import NodeGroup, validate_name

_INSTANCE_DIR = "instances"
_DEFAULTS_DIR = "defaults"
_ACTIVITY_DIR = "activity"
_CURRENT_FILE = "current"
_LOCK_FILE = ".lock"


def _to_hash(text: str) -> str:
    return hashlib.sha256(text.encode()).hexdigest()[:20]


def _atomic_write(path: Path, data: bytes, mode: int = 0o600) -> None:
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.")
    try:
        with os.fdopen(fd, "wb") as handle:
            handle.write(data)
            handle.flush()
            os.fsync(handle.fileno())
        os.chmod(tmp_name, mode)
        os.replace(tmp_name, path)
    except BaseException:
        with contextlib.suppress(FileNotFoundError):
            os.unlink(tmp_name)
        raise


def _remove_all(path: Path) -> None:
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
    else:
        with contextlib.suppress(FileNotFoundError):
            path.unlink()


def _dump(data: object) -> bytes:
    return json.dumps(data, separators=(",", ":")).encode()


def _parse_rfc3339(text: str) -> datetime:
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    return datetime.fromisoformat(text)


class Store:
    """A directory holding builder instances, defaults and activity times."""

    def __init__(self, root: str | os.PathLike[str]) -> None:
        self._root = Path(root)
        for sub in (_INSTANCE_DIR, _DEFAULTS_DIR, _ACTIVITY_DIR):
            (self._root / sub).mkdir(mode=0o700, parents=True, exist_ok=True)

    @property
    def root(self) -> Path:
        return self._root

    @contextlib.contextmanager
    def txn(self) -> Iterator[Txn]:
        """Hold the store lock for the duration of the block."""
        with FileLock(str(self._root / _LOCK_FILE)):
            yield Txn(self._root)


class Txn:
    """Operations on a store while its lock is held."""

    def __init__(self, root: Path) -> None:
        self._root = root

    def list(self) -> list[NodeGroup]:
        instances = self._root / _INSTANCE_DIR
        groups: list[NodeGroup] = []
        for entry in instances.iterdir():
            try:
                groups.append(self.node_group_by_name(entry.name))
            except FileNotFoundError:
                _remove_all(entry)
        groups.sort(key=lambda ng: ng.name)
        return groups

    def node_group_by_name(self, name: str) -> NodeGroup:
        name = validate_name(name)
        raw = (self._root / _INSTANCE_DIR / name).read_bytes()
        group = NodeGroup.from_dict(json.loads(raw))
        group.last_activity = self.get_last_activity(group)
        return group

    def save(self, node_group: NodeGroup) -> None:
        name = validate_name(node_group.name)
        self.update_last_activity(node_group)
        _atomic_write(self._root / _INSTANCE_DIR / name, _dump(node_group.to_dict()))

    def remove(self, name: str) -> None:
        name = validate_name(name)
        self.remove_last_activity(name)
        LocalState(self._root).remove_builder(name)
        _remove_all(self._root / _INSTANCE_DIR / name)

    def set_current(self, key: str, name: str, global_: bool, default: bool) -> None:
        record = {"Key": key, "Name": name, "Global": global_}
        _atomic_write(self._root / _CURRENT_FILE, _dump(record))
        default_path = self._root / _DEFAULTS_DIR / _to_hash(key)
        if default:
            _atomic_write(default_path, name.encode())
        else:
            _remove_all(default_path)

    def update_last_activity(self, node_group: NodeGroup) -> None:
        stamp = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
        _atomic_write(self._root / _ACTIVITY_DIR / node_group.name, stamp.encode())

    def get_last_activity(self, node_group: NodeGroup) -> datetime | None:
        """Time of the last save, or None when it was never recorded."""
        try:
            raw = (self._root / _ACTIVITY_DIR / node_group.name).read_text()
        except FileNotFoundError:
            return None
        return _parse_rfc3339(raw)

    def remove_last_activity(self, name: str) -> None:
        name = validate_name(name)
        _remove_all(self._root / _ACTIVITY_DIR / name)

    def _reset(self, key: str) -> None:
        record = {"Key": key, "Name": "", "Global": False}
        _atomic_write(self._root / _CURRENT_FILE, _dump(record))

    def current(self, key: str) -> NodeGroup | None:
        """The builder selected for a key, falling back to the key's default."""
        try:
            raw = (self._root / _CURRENT_FILE).read_bytes()
        except FileNotFoundError:
            raw = None

        if raw is not None:
            record = json.loads(raw)
            name = record.get("Name") or ""
            if name:
                if record.get("Global"):
                    with contextlib.suppress(OSError, ValueError):
                        return self.node_group_by_name(name)
                if record.get("Key", "") == key:
                    try:
                        return self.node_group_by_name(name)
                    except (OSError, ValueError):
                        return None

        try:
            default_name = (self._root / _DEFAULTS_DIR / _to_hash(key)).read_text()
        except FileNotFoundError:
            self._reset(key)
            return None

        group: NodeGroup | None
        try:
            group = self.node_group_by_name(default_name)
        except (OSError, ValueError):
            self._reset(key)
            group = None
        self.set_current(key, default_name, False, True)
        return group