"""Per-builder record of build invocations stored on the local filesystem."""

from __future__ import annotations

import base64
import contextlib
import json
import os
import shutil
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

_REFS_DIR = "refs"
_GROUP_DIR = "__group__"


@dataclass
class State:
    """Local information about one build invocation."""

    target: str = ""
    local_path: str = ""
    dockerfile_path: str = ""
    group_ref: str = ""


@dataclass
class StateGroup:
    """A set of build invocations started together from one bake definition."""

    definition: bytes = b""
    targets: list[str] = field(default_factory=list)
    inputs: list[str] = field(default_factory=list)
    refs: list[str] = field(default_factory=list)


def _state_to_dict(state: State) -> dict[str, Any]:
    data: dict[str, Any] = {
        "Target": state.target,
        "LocalPath": state.local_path,
        "DockerfilePath": state.dockerfile_path,
    }
    if state.group_ref:
        data["GroupRef"] = state.group_ref
    return data


def _state_from_dict(data: dict[str, Any]) -> State:
    return State(
        target=data.get("Target") or "",
        local_path=data.get("LocalPath") or "",
        dockerfile_path=data.get("DockerfilePath") or "",
        group_ref=data.get("GroupRef") or "",
    )


def _group_to_dict(group: StateGroup) -> dict[str, Any]:
    data: dict[str, Any] = {
        "Definition": base64.b64encode(group.definition).decode("ascii"),
    }
    if group.targets:
        data["Targets"] = list(group.targets)
    if group.inputs:
        data["Inputs"] = list(group.inputs)
    data["Refs"] = list(group.refs)
    return data


def _group_from_dict(data: dict[str, Any]) -> StateGroup:
    definition = data.get("Definition")
    return StateGroup(
        definition=base64.b64decode(definition) if definition else b"",
        targets=list(data.get("Targets") or []),
        inputs=list(data.get("Inputs") or []),
        refs=list(data.get("Refs") or []),
    )


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


def _validate(builder_name: str, node_name: str, ref_id: str) -> None:
    if not builder_name:
        raise ValueError("builder name empty")
    if not node_name:
        raise ValueError("node name empty")
    if not ref_id:
        raise ValueError("ref ID empty")


class LocalState:
    """Reads and writes build refs and ref groups below a root directory."""

    def __init__(self, root: str | os.PathLike[str]) -> None:
        if not os.fspath(root):
            raise ValueError("root dir empty")
        self._root = Path(root)
        (self._root / _REFS_DIR).mkdir(mode=0o700, parents=True, exist_ok=True)

    @property
    def root(self) -> Path:
        return self._root

    def _refs(self) -> Path:
        return self._root / _REFS_DIR

    def read_ref(self, builder_name: str, node_name: str, ref_id: str) -> State:
        _validate(builder_name, node_name, ref_id)
        raw = (self._refs() / builder_name / node_name / ref_id).read_bytes()
        return _state_from_dict(json.loads(raw))

    def save_ref(self, builder_name: str, node_name: str, ref_id: str, state: State) -> None:
        _validate(builder_name, node_name, ref_id)
        ref_dir = self._refs() / builder_name / node_name
        ref_dir.mkdir(mode=0o700, parents=True, exist_ok=True)
        _atomic_write(ref_dir / ref_id, json.dumps(_state_to_dict(state)).encode())

    def read_group(self, group_id: str) -> StateGroup:
        raw = (self._refs() / _GROUP_DIR / group_id).read_bytes()
        return _group_from_dict(json.loads(raw))

    def save_group(self, group_id: str, group: StateGroup) -> None:
        group_dir = self._refs() / _GROUP_DIR
        group_dir.mkdir(mode=0o700, parents=True, exist_ok=True)
        _atomic_write(group_dir / group_id, json.dumps(_group_to_dict(group)).encode())

    def remove_builder(self, builder_name: str) -> None:
        """Remove every ref of a builder, and the groups left without refs."""
        if not builder_name:
            raise ValueError("builder name empty")
        builder_dir = self._refs() / builder_name
        try:
            os.lstat(builder_dir)
        except FileNotFoundError:
            return
        for entry in sorted(builder_dir.iterdir()):
            self.remove_builder_node(builder_name, entry.name)
        shutil.rmtree(builder_dir)

    def remove_builder_node(self, builder_name: str, node_name: str) -> None:
        """Remove every ref of a builder node, and the groups fully owned by it."""
        if not builder_name:
            raise ValueError("builder name empty")
        if not node_name:
            raise ValueError("node name empty")
        node_dir = self._refs() / builder_name / node_name
        try:
            os.lstat(node_dir)
        except FileNotFoundError:
            return

        group_refs: dict[str, list[str]] = {}
        seen_refs: dict[str, list[str]] = {}
        for entry in sorted(node_dir.iterdir()):
            state = self.read_ref(builder_name, node_name, entry.name)
            if not state.group_ref:
                continue
            if state.group_ref not in group_refs:
                with contextlib.suppress(OSError, ValueError):
                    group_refs[state.group_ref] = self.read_group(state.group_ref).refs
            seen_refs.setdefault(state.group_ref, []).append(
                f"{builder_name}/{node_name}/{entry.name}"
            )

        for group_id, refs in group_refs.items():
            seen = seen_refs.get(group_id)
            if seen is not None and len(seen) == len(refs):
                self._remove_group(group_id)

        shutil.rmtree(node_dir)

    def _remove_group(self, group_id: str) -> None:
        if not group_id:
            raise ValueError("group ref empty")
        with contextlib.suppress(FileNotFoundError):
            os.remove(self._refs() / _GROUP_DIR / group_id)