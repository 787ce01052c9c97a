"""Kubernetes Deployment and ConfigMap manifests for BuildKit pods."""

from __future__ import annotations

import posixpath
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

from buildrig.platforms import Platform, format_platforms

CONTAINER_NAME = "buildkitd"
ANNOTATION_PLATFORM = "buildx.docker.com/platform"
LABEL_APP = "app"

_CONFIG_ROOT = "/etc/buildkit"
_ROOTLESS_STATE_DIR = "/home/user/.local/share/buildkit"
_APPARMOR_ANNOTATION = "container.apparmor.security.beta.kubernetes.io/" + CONTAINER_NAME

_QUANTITY = re.compile(
    r"([+-]?(?:[0-9]+(?:\.[0-9]*)?|\.[0-9]+))"
    r"((?:[eE][+-]?[0-9]+)|Ki|Mi|Gi|Ti|Pi|Ei|n|u|m|k|M|G|T|P|E|)"
)
_BINARY_SUFFIXES = {
    "Ki": Decimal(2) ** 10,
    "Mi": Decimal(2) ** 20,
    "Gi": Decimal(2) ** 30,
    "Ti": Decimal(2) ** 40,
    "Pi": Decimal(2) ** 50,
    "Ei": Decimal(2) ** 60,
}
_DECIMAL_SUFFIXES = {
    "n": Decimal("1e-9"),
    "u": Decimal("1e-6"),
    "m": Decimal("1e-3"),
    "": Decimal(1),
    "k": Decimal("1e3"),
    "M": Decimal("1e6"),
    "G": Decimal("1e9"),
    "T": Decimal("1e12"),
    "P": Decimal("1e15"),
    "E": Decimal("1e18"),
}


class ManifestError(ValueError):
    """Raised when deployment options cannot be turned into manifests."""


@dataclass
class Toleration:
    key: str = ""
    operator: str = ""
    value: str = ""
    effect: str = ""
    toleration_seconds: int | None = None


@dataclass
class QemuOpt:
    """Whether to install binfmt emulators, and with which image."""

    install: bool = False
    image: str = ""


@dataclass
class DeploymentOpt:
    namespace: str = ""
    name: str = ""
    image: str = ""
    replicas: int = 0
    service_account_name: str = ""
    qemu: QemuOpt = field(default_factory=QemuOpt)
    buildkit_flags: list[str] = field(default_factory=list)
    config_files: dict[str, bytes] = field(default_factory=dict)
    rootless: bool = False
    node_selector: dict[str, str] = field(default_factory=dict)
    custom_annotations: dict[str, str] = field(default_factory=dict)
    custom_labels: dict[str, str] = field(default_factory=dict)
    tolerations: list[Toleration] = field(default_factory=list)
    requests_cpu: str = ""
    requests_memory: str = ""
    limits_cpu: str = ""
    limits_memory: str = ""
    platforms: list[Platform] = field(default_factory=list)


def parse_quantity(text: str) -> Decimal:
    """Numeric value of a Kubernetes resource quantity such as ``100m`` or ``32Mi``."""
    match = _QUANTITY.fullmatch(text)
    if match is None:
        raise ManifestError(f"quantities must match the regular expression: {text!r}")
    number, suffix = match.groups()
    value = Decimal(number)
    if suffix in _BINARY_SUFFIXES:
        return value * _BINARY_SUFFIXES[suffix]
    if suffix in _DECIMAL_SUFFIXES:
        return value * _DECIMAL_SUFFIXES[suffix]
    return value * (Decimal(10) ** int(suffix[1:]))


def split_config_files(files: Mapping[str, bytes]) -> list[dict[str, Any]]:
    """Group config files by directory; each group becomes one ConfigMap."""
    groups: list[dict[str, Any]] = []
    by_dir: dict[str, dict[str, Any]] = {}
    name_index = 0
    for key in sorted(files):
        directory = posixpath.normpath(posixpath.dirname(key) or ".")
        group = by_dir.get(directory)
        if group is None:
            name = "config"
            if directory != ".":
                name_index += 1
                name = f"{name}-{name_index}"
            group = {"name": name, "path": directory, "files": {}}
            by_dir[directory] = group
            groups.append(group)
        data = files[key]
        group["files"][posixpath.basename(key)] = (
            data.decode() if isinstance(data, bytes) else str(data)
        )
    return groups


def _metadata(namespace: str, name: str | None = None) -> dict[str, Any]:
    meta: dict[str, Any] = {}
    if namespace:
        meta["namespace"] = namespace
    if name is not None:
        meta["name"] = name
    return meta


def _toleration_dict(t: Toleration) -> dict[str, Any]:
    data: dict[str, Any] = {}
    if t.key:
        data["key"] = t.key
    if t.operator:
        data["operator"] = t.operator
    if t.value:
        data["value"] = t.value
    if t.effect:
        data["effect"] = t.effect
    if t.toleration_seconds is not None:
        data["tolerationSeconds"] = t.toleration_seconds
    return data


def _to_rootless(deployment: dict[str, Any]) -> None:
    template = deployment["spec"]["template"]
    pod_spec = template["spec"]
    container = pod_spec["containers"][0]
    container["args"] = [*container["args"], "--oci-worker-no-process-sandbox"]
    container["securityContext"] = {"seccompProfile": {"type": "Unconfined"}}
    template["metadata"].setdefault("annotations", {})[_APPARMOR_ANNOTATION] = "unconfined"
    # The image's default volume is mounted nosuid,nodev on some hosts, so use an emptyDir.
    container.setdefault("volumeMounts", []).append(
        {"name": CONTAINER_NAME, "mountPath": _ROOTLESS_STATE_DIR}
    )
    pod_spec.setdefault("volumes", []).append({"name": CONTAINER_NAME, "emptyDir": {}})


def new_deployment(opt: DeploymentOpt) -> tuple[dict[str, Any], list[dict[str, Any]]]:
    """Build the Deployment manifest and the ConfigMaps it mounts."""
    labels: dict[str, str] = {LABEL_APP: opt.name}
    annotations: dict[str, str] = {}

    if opt.platforms:
        annotations[ANNOTATION_PLATFORM] = ",".join(format_platforms(opt.platforms))

    for key, value in opt.custom_annotations.items():
        if key == ANNOTATION_PLATFORM:
            raise ManifestError(
                f'the annotation "{ANNOTATION_PLATFORM}" is reserved and cannot be customized'
            )
        annotations[key] = value

    for key, value in opt.custom_labels.items():
        if key == LABEL_APP:
            raise ManifestError(
                f'the label "{LABEL_APP}" is reserved and cannot be customized'
            )
        labels[key] = value

    container: dict[str, Any] = {
        "name": CONTAINER_NAME,
        "image": opt.image,
        "args": list(opt.buildkit_flags),
        "securityContext": {"privileged": True},
        "readinessProbe": {"exec": {"command": ["buildctl", "debug", "workers"]}},
        "resources": {"requests": {}, "limits": {}},
    }
    pod_spec: dict[str, Any] = {"containers": [container]}
    if opt.service_account_name:
        pod_spec["serviceAccountName"] = opt.service_account_name

    deployment: dict[str, Any] = {
        "apiVersion": "apps/v1",
        "kind": "Deployment",
        "metadata": {
            **_metadata(opt.namespace, opt.name),
            "labels": labels,
            "annotations": annotations,
        },
        "spec": {
            "replicas": opt.replicas,
            "selector": {"matchLabels": labels},
            "template": {
                "metadata": {"labels": labels, "annotations": annotations},
                "spec": pod_spec,
            },
        },
    }

    config_maps: list[dict[str, Any]] = []
    for cfg in split_config_files(opt.config_files):
        config_map = {
            "apiVersion": "v1",
            "kind": "ConfigMap",
            "metadata": {
                **_metadata(opt.namespace, f"{opt.name}-{cfg['name']}"),
                "annotations": annotations,
            },
            "data": cfg["files"],
        }
        container["volumeMounts"] = [
            {
                "name": cfg["name"],
                "mountPath": posixpath.normpath(posixpath.join(_CONFIG_ROOT, cfg["path"])),
            }
        ]
        pod_spec["volumes"] = [
            {"name": "config", "configMap": {"name": config_map["metadata"]["name"]}}
        ]
        config_maps.append(config_map)

    if opt.qemu.install:
        pod_spec["initContainers"] = [
            {
                "name": "qemu",
                "image": opt.qemu.image,
                "args": ["--install", "all"],
                "securityContext": {"privileged": True},
            }
        ]

    if opt.rootless:
        _to_rootless(deployment)

    if opt.node_selector:
        pod_spec["nodeSelector"] = dict(opt.node_selector)

    if opt.tolerations:
        pod_spec["tolerations"] = [_toleration_dict(t) for t in opt.tolerations]

    resources = container["resources"]
    for section, resource, text in (
        ("requests", "cpu", opt.requests_cpu),
        ("requests", "memory", opt.requests_memory),
        ("limits", "cpu", opt.limits_cpu),
        ("limits", "memory", opt.limits_memory),
    ):
        if text:
            parse_quantity(text)
            resources[section][resource] = text

    return deployment, config_maps