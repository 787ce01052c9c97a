"""Parsing, normalising and formatting of os/arch/variant platform specifiers."""

from __future__ import annotations

import platform as _host
import re
from collections.abc import Iterable
from dataclasses import dataclass

_COMPONENT = re.compile(r"[A-Za-z0-9_-]+")

_KNOWN_OS = frozenset(
    {
        "aix", "android", "darwin", "dragonfly", "freebsd", "hurd", "illumos",
        "ios", "js", "linux", "nacl", "netbsd", "openbsd", "plan9", "solaris",
        "windows", "zos",
    }
)

_KNOWN_ARCH = frozenset(
    {
        "386", "amd64", "amd64p32", "arm", "armbe", "arm64", "arm64be", "ppc64",
        "ppc64le", "loong64", "mips", "mipsle", "mips64", "mips64le", "mips64p32",
        "mips64p32le", "ppc", "riscv", "riscv64", "s390", "s390x", "sparc",
        "sparc64", "wasm",
    }
)

_HOST_MACHINES = {
    "i486": ("386", ""),
    "i586": ("386", ""),
    "i686": ("386", ""),
    "armv5tel": ("arm", "v5"),
    "armv6l": ("arm", "v6"),
    "armv7l": ("arm", "v7"),
    "armv8l": ("arm", "v8"),
}


@dataclass(frozen=True)
class Platform:
    """A target platform: operating system, architecture and optional variant."""

    os: str
    architecture: str
    variant: str = ""

    def format(self) -> str:
        parts = (self.os or "unknown", self.architecture, self.variant)
        return "/".join(part for part in parts if part)

    def __str__(self) -> str:
        return self.format()


def _normalize_os(name: str) -> str:
    name = name.lower()
    return "darwin" if name == "macos" else name


def _normalize_arch(arch: str, variant: str) -> tuple[str, str]:
    arch, variant = arch.lower(), variant.lower()
    if arch == "i386":
        return "386", ""
    if arch in ("x86_64", "x86-64", "amd64"):
        return "amd64", "" if variant == "v1" else variant
    if arch in ("aarch64", "arm64"):
        return "arm64", "" if variant in ("8", "v8") else variant
    if arch == "armhf":
        return "arm", "v7"
    if arch == "armel":
        return "arm", "v6"
    if arch == "arm":
        if variant in ("", "7"):
            return "arm", "v7"
        if variant in ("5", "6", "8"):
            return "arm", "v" + variant
    return arch, variant


def _host_platform() -> Platform:
    os_name = _normalize_os(_host.system() or "linux")
    machine = _host.machine().lower()
    arch, variant = _HOST_MACHINES.get(machine) or _normalize_arch(machine, "")
    return Platform(os_name, arch, variant)


def parse_platform(spec: str) -> Platform:
    """Parse and normalise a single platform specifier such as ``linux/arm/v7``."""
    parts = spec.split("/")
    if any(not _COMPONENT.fullmatch(part) for part in parts):
        raise ValueError(f"{spec!r}: invalid platform specifier")

    if len(parts) == 1:
        word = parts[0]
        host = _host_platform()
        os_name = _normalize_os(word)
        if os_name in _KNOWN_OS:
            return Platform(os_name, host.architecture, host.variant)
        arch, variant = _normalize_arch(word, "")
        if arch in _KNOWN_ARCH:
            return Platform(host.os, arch, variant)
        raise ValueError(f"{spec!r}: unknown operating system or architecture")

    if len(parts) in (2, 3):
        variant = parts[2] if len(parts) == 3 else ""
        arch, variant = _normalize_arch(parts[1], variant)
        return Platform(_normalize_os(parts[0]), arch, variant)

    raise ValueError(f"{spec!r}: cannot parse platform specifier")


def parse_platforms(specs: Iterable[str]) -> list[Platform]:
    """Parse comma separated specifiers, resolving ``local`` and dropping duplicates."""
    result: list[Platform] = []
    seen: set[str] = set()
    for spec in specs:
        for item in spec.split(","):
            parsed = _host_platform() if item == "local" else parse_platform(item)
            key = parsed.format()
            if key not in seen:
                seen.add(key)
                result.append(parsed)
    return result


def format_platforms(platforms: Iterable[Platform]) -> list[str]:
    return [p.format() for p in platforms]