"""Builder instances: named groups of nodes and their validation."""

from __future__ import annotations

import base64
import logging
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from buildrig.platforms import Platform, parse_platforms

log = logging.getLogger(__name__)

_NAME_PATTERN = re.compile(r"[a-zA-Z][a-zA-Z0-9.\-_]*")


class InvalidNameError(ValueError):
    """Raised when a builder or node name does not match the allowed pattern."""


def validate_name(name: str) -> str:
    """Check a name and return it lower-cased."""
    if not _NAME_PATTERN.fullmatch(name):
        raise InvalidNameError(
            f"invalid name {name}, name needs to start with a letter and may not "
            "contain symbols, except ._-"
        )
    return name.lower()


@dataclass
class Node:
    """One endpoint that a builder instance runs on."""

    name: str
    endpoint: str = ""
    platforms: list[Platform] = field(default_factory=list)
    flags: list[str] | None = None
    driver_opts: dict[str, str] | None = None
    files: dict[str, bytes] | None = None

    def copy(self) -> Node:
        return Node(
            name=self.name,
            endpoint=self.endpoint,
            platforms=list(self.platforms),
            flags=None if self.flags is None else list(self.flags),
            driver_opts=None if self.driver_opts is None else dict(self.driver_opts),
            files=None if self.files is None else dict(self.files),
        )


def _platform_to_dict(p: Platform) -> dict[str, str]:
    data = {"architecture": p.architecture, "os": p.os}
    if p.variant:
        data["variant"] = p.variant
    return data


def _platform_from_dict(data: Mapping[str, Any]) -> Platform:
    return Platform(
        os=data.get("os") or "",
        architecture=data.get("architecture") or "",
        variant=data.get("variant") or "",
    )


def _node_to_dict(node: Node) -> dict[str, Any]:
    return {
        "Name": node.name,
        "Endpoint": node.endpoint,
        "Platforms": [_platform_to_dict(p) for p in node.platforms],
        "Flags": None if node.flags is None else list(node.flags),
        "DriverOpts": None if node.driver_opts is None else dict(node.driver_opts),
        "Files": None
        if node.files is None
        else {k: base64.b64encode(v).decode("ascii") for k, v in node.files.items()},
    }


def _node_from_dict(data: Mapping[str, Any]) -> Node:
    flags = data.get("Flags")
    opts = data.get("DriverOpts")
    files = data.get("Files")
    return Node(
        name=data.get("Name") or "",
        endpoint=data.get("Endpoint") or "",
        platforms=[_platform_from_dict(p) for p in data.get("Platforms") or []],
        flags=None if flags is None else list(flags),
        driver_opts=None if opts is None else dict(opts),
        files=None if files is None else {k: base64.b64decode(v) for k, v in files.items()},
    )


@dataclass
class NodeGroup:
    """A builder instance: a named driver with an ordered list of nodes."""

    name: str = ""
    driver: str = ""
    nodes: list[Node] = field(default_factory=list)
    dynamic: bool = False
    docker_context: bool = False
    last_activity: datetime | None = None

    def leave(self, name: str) -> None:
        if self.dynamic:
            raise ValueError("dynamic node group does not support Leave")
        index = self._find_node(name)
        if index == -1:
            raise ValueError(f"node {name!r} not found for {self.name}")
        if len(self.nodes) == 1:
            raise ValueError("can not leave last node, do you want to rm instance instead?")
        del self.nodes[index]

    def update(
        self,
        name: str,
        endpoint: str,
        platforms: Sequence[str] | None = None,
        endpoints_set: bool = False,
        action_append: bool = False,
        flags: Sequence[str] | None = None,
        files: Mapping[str, bytes] | None = None,
        driver_opts: Mapping[str, str] | None = None,
    ) -> None:
        """Change an existing node or add a new one."""
        if self.dynamic:
            raise ValueError("dynamic node group does not support Update")
        index = self._find_node(name)
        if index == -1 and not action_append:
            if self.nodes:
                raise ValueError(f"node {name} not found, did you mean to append?")
            self.nodes = []

        parsed = parse_platforms(platforms or [])

        if index != -1:
            node = self.nodes[index]
            needs_restart = False
            if endpoints_set:
                node.endpoint = endpoint
                needs_restart = True
            if platforms:
                node.platforms = parsed
            if flags is not None:
                node.flags = list(flags)
                needs_restart = True
            if driver_opts is not None:
                node.driver_opts = dict(driver_opts)
                needs_restart = True
            if files is not None:
                if node.files is None:
                    node.files = {}
                node.files.update(files)
                needs_restart = True
            if needs_restart:
                log.warning("new settings may not be used until builder is restarted")
            self._validate_duplicates(endpoint, index)
            return

        if not name:
            name = self._next_node_name()
        name = validate_name(name)

        self.nodes.append(
            Node(
                name=name,
                endpoint=endpoint,
                platforms=parsed,
                flags=None if flags is None else list(flags),
                driver_opts=None if driver_opts is None else dict(driver_opts),
                files=None if files is None else dict(files),
            )
        )
        self._validate_duplicates(endpoint, len(self.nodes) - 1)

    def copy(self) -> NodeGroup:
        return NodeGroup(
            name=self.name,
            driver=self.driver,
            nodes=[node.copy() for node in self.nodes],
            dynamic=self.dynamic,
        )

    def to_dict(self) -> dict[str, Any]:
        """Stored form of the group; context and activity fields are not kept."""
        return {
            "Name": self.name,
            "Driver": self.driver,
            "Nodes": [_node_to_dict(n) for n in self.nodes],
            "Dynamic": self.dynamic,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> NodeGroup:
        return cls(
            name=data.get("Name") or "",
            driver=data.get("Driver") or "",
            nodes=[_node_from_dict(n) for n in data.get("Nodes") or []],
            dynamic=bool(data.get("Dynamic")),
        )

    def _validate_duplicates(self, endpoint: str, index: int) -> None:
        if sum(1 for n in self.nodes if n.endpoint == endpoint) > 1:
            raise ValueError(f"invalid duplicate endpoint {endpoint}")
        taken = {p.format() for p in self.nodes[index].platforms}
        for i, node in enumerate(self.nodes):
            if i != index:
                node.platforms = [p for p in node.platforms if p.format() not in taken]

    def _find_node(self, name: str) -> int:
        return next((i for i, n in enumerate(self.nodes) if n.name == name), -1)

    def _next_node_name(self) -> str:
        i = 0
        while self._find_node(f"{self.name}{i}") != -1:
            i += 1
        return f"{self.name}{i}"