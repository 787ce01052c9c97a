"""Build drivers: status, features, the factory registry and bootstrapping."""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any

from buildrig.nodegroup import Node
from buildrig.platforms import Platform

DEFAULT_IMAGE = "moby/buildkit:buildx-stable-1"
QEMU_IMAGE = "tonistiigi/binfmt:latest"
DEFAULT_ROOTLESS_IMAGE = DEFAULT_IMAGE + "-rootless"


class DriverError(Exception):
    """Raised when a driver cannot be found, created or started."""


class NotRunningError(DriverError):
    """Raised when a driver's daemon is not running."""

    def __init__(self, message: str = "driver not running") -> None:
        super().__init__(message)


class NotConnectingError(DriverError):
    """Raised when a driver cannot connect to its daemon."""

    def __init__(self, message: str = "driver not connecting") -> None:
        super().__init__(message)


class Status(IntEnum):
    INACTIVE = 0
    STARTING = 1
    RUNNING = 2
    STOPPING = 3
    STOPPED = 4

    def __str__(self) -> str:
        return self.name.lower()


class Feature(str, Enum):
    OCI_EXPORTER = "OCI exporter"
    DOCKER_EXPORTER = "Docker exporter"
    CACHE_EXPORT = "Cache export"
    MULTI_PLATFORM = "Multi-platform build"

    def __str__(self) -> str:
        return self.value


@dataclass
class Info:
    """Runtime state of a driver.

    ``dynamic_nodes`` stays empty when the nodes are listed statically in the store.
    """

    status: Status
    dynamic_nodes: list[Node] = field(default_factory=list)


@dataclass
class InitConfig:
    """Everything a factory needs to create a driver instance."""

    name: str = ""
    endpoint_addr: str = ""
    docker_api: Any = None
    kube_client_config: Any = None
    buildkit_flags: list[str] = field(default_factory=list)
    files: dict[str, bytes] = field(default_factory=dict)
    driver_opts: dict[str, str] = field(default_factory=dict)
    auth: Any = None
    platforms: list[Platform] = field(default_factory=list)
    context_path_hash: str = ""
    dial_meta: dict[str, list[str]] = field(default_factory=dict)


class Factory(ABC):
    """Creates drivers of one kind and rates how well it suits an endpoint."""

    @abstractmethod
    def name(self) -> str: ...

    @abstractmethod
    def usage(self) -> str: ...

    @abstractmethod
    def priority(
        self, endpoint: str, api: Any, dial_meta: Mapping[str, Sequence[str]] | None
    ) -> int:
        """Lower values are preferred."""

    @abstractmethod
    def new(self, config: InitConfig) -> Driver: ...

    @abstractmethod
    def allows_instances(self) -> bool: ...


class Driver(ABC):
    """A connection to one BuildKit daemon."""

    def __init__(self, factory: Factory, config: InitConfig) -> None:
        self.factory = factory
        self.config = config

    @abstractmethod
    def bootstrap(self, logger: Callable[..., Any] | None) -> None: ...

    @abstractmethod
    def info(self) -> Info: ...

    @abstractmethod
    def version(self) -> str: ...

    @abstractmethod
    def stop(self, force: bool) -> None: ...

    @abstractmethod
    def rm(self, force: bool, rm_volume: bool, rm_daemon: bool) -> None: ...

    @abstractmethod
    def client(self) -> Any: ...

    @abstractmethod
    def features(self) -> dict[Feature, bool]: ...

    @abstractmethod
    def host_gateway_ip(self) -> str: ...

    @abstractmethod
    def is_moby_driver(self) -> bool: ...


class DriverHandle:
    """Wraps a driver so that its client is created at most once."""

    def __init__(self, driver: Driver) -> None:
        self.driver = driver
        self._lock = threading.Lock()
        self._done = False
        self._client: Any = None
        self._error: BaseException | None = None

    def client(self) -> Any:
        with self._lock:
            if not self._done:
                try:
                    self._client = self.driver.client()
                except Exception as exc:
                    self._error = exc
                self._done = True
        if self._error is not None:
            raise self._error
        return self._client

    def __getattr__(self, attr: str) -> Any:
        if attr == "driver":
            raise AttributeError(attr)
        return getattr(self.driver, attr)


_drivers: dict[str, Factory] = {}


def register(factory: Factory) -> None:
    _drivers[factory.name()] = factory


def get_default_factory(
    endpoint: str,
    api: Any,
    instance_required: bool,
    dial_meta: Mapping[str, Sequence[str]] | None,
) -> Factory:
    """The registered factory with the lowest priority for the endpoint."""
    if not _drivers:
        raise DriverError("no drivers available")
    candidates = [
        (f.priority(endpoint, api, dial_meta), f)
        for f in _drivers.values()
        if not instance_required or f.allows_instances()
    ]
    if not candidates:
        raise DriverError("no drivers available")
    return min(candidates, key=lambda item: item[0])[1]


def get_factory(name: str, instance_required: bool) -> Factory:
    for factory in _drivers.values():
        if factory.name() == name:
            if instance_required and not factory.allows_instances():
                raise DriverError(f"additional instances of driver {name!r} cannot be created")
            return factory
    raise DriverError(f"failed to find driver {name!r}")


def get_factories(instance_required: bool) -> list[Factory]:
    factories = [
        f for f in _drivers.values() if not instance_required or f.allows_instances()
    ]
    return sorted(factories, key=lambda f: f.name())


def get_driver(
    name: str,
    factory: Factory | None,
    endpoint_addr: str,
    api: Any,
    auth: Any,
    kube_config: Any,
    flags: Sequence[str] | None,
    files: Mapping[str, bytes] | None,
    driver_opts: Mapping[str, str] | None,
    platforms: Sequence[Platform] | None,
    context_path_hash: str,
    dial_meta: Mapping[str, Sequence[str]] | None,
) -> DriverHandle:
    config = InitConfig(
        name=name,
        endpoint_addr=endpoint_addr,
        docker_api=api,
        kube_client_config=kube_config,
        buildkit_flags=list(flags or []),
        files=dict(files or {}),
        driver_opts=dict(driver_opts or {}),
        auth=auth,
        platforms=list(platforms or []),
        context_path_hash=context_path_hash,
        dial_meta={k: list(v) for k, v in (dial_meta or {}).items()},
    )
    if factory is None:
        factory = get_default_factory(endpoint_addr, api, False, dial_meta)
    return DriverHandle(factory.new(config))


def boot(handle: DriverHandle, logger: Callable[..., Any] | None = None) -> Any:
    """Start the driver if needed and return its client."""
    attempt = 0
    while True:
        info = handle.info()
        attempt += 1
        if info.status != Status.RUNNING:
            if attempt > 2:
                raise DriverError(
                    f"failed to bootstrap {type(handle.driver).__name__} driver in attempts"
                )
            handle.bootstrap(logger)
        try:
            return handle.client()
        except NotRunningError:
            if attempt <= 2:
                continue
            raise