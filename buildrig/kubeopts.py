"""Driver options of the Kubernetes driver and builder-to-deployment naming."""

from __future__ import annotations

import re

from buildrig.driver import (
    DEFAULT_IMAGE,
    DEFAULT_ROOTLESS_IMAGE,
    QEMU_IMAGE,
    DriverError,
    InitConfig,
)
from buildrig.manifest import DeploymentOpt, QemuOpt, Toleration

DRIVER_NAME = "kubernetes"
LOADBALANCE_RANDOM = "random"
LOADBALANCE_STICKY = "sticky"

_BUILDER_PREFIX = "buildx_buildkit_"
_INTEGER = re.compile(r"[+-]?[0-9]+")
_TRUE = frozenset({"1", "t", "T", "TRUE", "true", "True"})
_FALSE = frozenset({"0", "f", "F", "FALSE", "false", "False"})


class KubeOptionError(DriverError, ValueError):
    """Raised for an invalid Kubernetes driver option."""


def _atoi(text: str) -> int:
    if not _INTEGER.fullmatch(text):
        raise KubeOptionError(f'strconv.Atoi: parsing "{text}": invalid syntax')
    return int(text)


def _parse_bool(text: str) -> bool:
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    raise KubeOptionError(f'strconv.ParseBool: parsing "{text}": invalid syntax')


def split_multi_values(text: str, item_sep: str, kv_sep: str) -> dict[str, str]:
    """Parse ``k1=v1,k2=v2`` (optionally quoted) into a dict."""
    result: dict[str, str] = {}
    for item in text.strip('"').split(item_sep):
        pair = item.split(kv_sep)
        if len(pair) != 2:
            raise KubeOptionError(f"invalid key-value pair: {item}")
        result[pair[0]] = pair[1]
    return result


def buildx_name_to_deployment_name(name: str) -> str:
    """``buildx_buildkit_loving_mendeleev0`` becomes ``loving-mendeleev0``."""
    if not name.startswith(_BUILDER_PREFIX):
        raise KubeOptionError(f'expected a string with "{_BUILDER_PREFIX}", got {name!r}')
    return name[len(_BUILDER_PREFIX):].replace("_", "-")


def _parse_tolerations(text: str) -> list[Toleration]:
    tolerations: list[Toleration] = []
    for spec in text.split(";"):
        toleration = Toleration()
        for item in spec.split(","):
            pair = item.split("=")
            if len(pair) != 2:
                continue
            key, value = pair
            if key == "key":
                toleration.key = value
            elif key == "operator":
                toleration.operator = value
            elif key == "value":
                toleration.value = value
            elif key == "effect":
                toleration.effect = value
            elif key == "tolerationSeconds":
                toleration.toleration_seconds = _atoi(value)
            else:
                raise KubeOptionError(f"invalid toleration {text!r}")
        tolerations.append(toleration)
    return tolerations


def _split_or_wrap(text: str, what: str) -> dict[str, str]:
    try:
        return split_multi_values(text, ",", "=")
    except KubeOptionError as exc:
        raise KubeOptionError(f"cannot parse {what}: {exc}") from exc


def process_driver_opts(
    deployment_name: str, namespace: str, config: InitConfig
) -> tuple[DeploymentOpt, str, str]:
    """Turn driver options into deployment options, a load-balance mode and a namespace."""
    opt = DeploymentOpt(
        name=deployment_name,
        image=DEFAULT_IMAGE,
        replicas=1,
        buildkit_flags=list(config.buildkit_flags),
        rootless=False,
        platforms=list(config.platforms),
        config_files=dict(config.files),
        qemu=QemuOpt(image=QEMU_IMAGE),
    )
    loadbalance = LOADBALANCE_STICKY

    for key, value in config.driver_opts.items():
        if key == "image":
            if value:
                opt.image = value
        elif key == "namespace":
            namespace = value
        elif key == "replicas":
            opt.replicas = _atoi(value)
        elif key == "requests.cpu":
            opt.requests_cpu = value
        elif key == "requests.memory":
            opt.requests_memory = value
        elif key == "limits.cpu":
            opt.limits_cpu = value
        elif key == "limits.memory":
            opt.limits_memory = value
        elif key == "rootless":
            opt.rootless = _parse_bool(value)
            if "image" not in config.driver_opts:
                opt.image = DEFAULT_ROOTLESS_IMAGE
        elif key == "serviceaccount":
            opt.service_account_name = value
        elif key == "nodeselector":
            opt.node_selector = _split_or_wrap(value, "node selector")
        elif key == "annotations":
            opt.custom_annotations = _split_or_wrap(value, "annotations")
        elif key == "labels":
            opt.custom_labels = _split_or_wrap(value, "labels")
        elif key == "tolerations":
            opt.tolerations = _parse_tolerations(value)
        elif key == "loadbalance":
            if value not in (LOADBALANCE_STICKY, LOADBALANCE_RANDOM):
                raise KubeOptionError(f"invalid loadbalance {value!r}")
            loadbalance = value
        elif key == "qemu.install":
            opt.qemu.install = _parse_bool(value)
        elif key == "qemu.image":
            if value:
                opt.qemu.image = value
        else:
            raise KubeOptionError(f"invalid driver option {key} for driver {DRIVER_NAME}")

    return opt, loadbalance, namespace