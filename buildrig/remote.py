"""Endpoint validation and TLS option parsing for remote BuildKit daemons."""

from __future__ import annotations

import os
from dataclasses import dataclass
from urllib.parse import urlsplit

from buildrig.driver import DriverError, InitConfig

PRIORITY_SUPPORTED = 20
PRIORITY_UNSUPPORTED = 90

_SCHEMES = frozenset({"tcp", "unix", "ssh", "docker-container", "kube-pod"})


@dataclass
class TLSOptions:
    server_name: str = ""
    ca_cert: str = ""
    cert: str = ""
    key: str = ""


def validate_endpoint(endpoint: str) -> None:
    """Raise ValueError unless the endpoint uses a supported URL scheme."""
    try:
        scheme = urlsplit(endpoint).scheme
    except ValueError as exc:
        raise ValueError(f"failed to parse endpoint {endpoint}: {exc}") from exc
    if scheme not in _SCHEMES:
        raise ValueError(f"unrecognized url scheme {scheme}")


def endpoint_priority(endpoint: str) -> int:
    try:
        validate_endpoint(endpoint)
    except ValueError:
        return PRIORITY_UNSUPPORTED
    return PRIORITY_SUPPORTED


def _hostname(netloc: str) -> str:
    host = netloc.rpartition("@")[2]
    if host.startswith("["):
        end = host.find("]")
        return host[1:end] if end != -1 else host[1:]
    return host.partition(":")[0]


def parse_remote_options(config: InitConfig) -> TLSOptions | None:
    """Check a remote driver's configuration and return its TLS settings, if any."""
    if config.files:
        raise DriverError("setting config file is not supported for remote driver")
    if config.buildkit_flags:
        raise DriverError("setting buildkit flags is not supported for remote driver")

    tls = TLSOptions()
    enabled = False
    for key, value in config.driver_opts.items():
        if key == "servername":
            tls.server_name = value
        elif key in ("cacert", "cert", "key"):
            if not os.path.isabs(value):
                raise DriverError(f"non-absolute path '{value}' provided for {key}")
            if key == "cacert":
                tls.ca_cert = value
            elif key == "cert":
                tls.cert = value
            else:
                tls.key = value
        else:
            raise DriverError(f"invalid driver option {key} for remote driver")
        enabled = True

    if not enabled:
        return None

    if not tls.server_name:
        tls.server_name = _hostname(urlsplit(config.endpoint_addr).netloc)
    missing = []
    if not tls.ca_cert:
        missing.append("cacert")
    if tls.cert and not tls.key:
        missing.append("key")
    if tls.key and not tls.cert:
        missing.append("cert")
    if missing:
        raise DriverError(f"tls enabled, but missing keys {', '.join(missing)}")
    return tls