import pytest

from buildrig.driver import DEFAULT_IMAGE, DEFAULT_ROOTLESS_IMAGE, QEMU_IMAGE, InitConfig
from buildrig.kubeopts import (
    LOADBALANCE_RANDOM,
    LOADBALANCE_STICKY,
    KubeOptionError,
    buildx_name_to_deployment_name,
    process_driver_opts,
    split_multi_values,
)
from buildrig.manifest import Toleration

NAME = "buildx_buildkit_test"


def _run(opts):
    cfg = InitConfig(name=NAME, driver_opts=opts)
    return process_driver_opts(cfg.name, "test", cfg)


def test_valid_options():
    opt, loadbalance, ns = _run(
        {
            "namespace": "test-ns",
            "image": "test:latest",
            "replicas": "2",
            "requests.cpu": "100m",
            "requests.memory": "32Mi",
            "limits.cpu": "200m",
            "limits.memory": "64Mi",
            "rootless": "true",
            "nodeselector": "selector1=value1,selector2=value2",
            "tolerations": "key=tolerationKey1,value=tolerationValue1,operator=Equal,"
            "effect=NoSchedule,tolerationSeconds=60;key=tolerationKey2,operator=Exists",
            "annotations": "example.com/expires-after=annotation1,example.com/other=annotation2",
            "labels": "example.com/owner=label1,example.com/other=label2",
            "loadbalance": "random",
            "qemu.install": "true",
            "qemu.image": "qemu:latest",
        }
    )
    assert ns == "test-ns"
    assert opt.image == "test:latest"
    assert opt.replicas == 2
    assert opt.requests_cpu == "100m"
    assert opt.requests_memory == "32Mi"
    assert opt.limits_cpu == "200m"
    assert opt.limits_memory == "64Mi"
    assert opt.rootless is True
    assert opt.node_selector == {"selector1": "value1", "selector2": "value2"}
    assert opt.custom_annotations == {
        "example.com/expires-after": "annotation1",
        "example.com/other": "annotation2",
    }
    assert opt.custom_labels == {"example.com/owner": "label1", "example.com/other": "label2"}
    assert opt.tolerations == [
        Toleration(
            key="tolerationKey1",
            operator="Equal",
            value="tolerationValue1",
            effect="NoSchedule",
            toleration_seconds=60,
        ),
        Toleration(key="tolerationKey2", operator="Exists"),
    ]
    assert loadbalance == LOADBALANCE_RANDOM
    assert opt.qemu.install is True
    assert opt.qemu.image == "qemu:latest"


def test_no_options():
    opt, loadbalance, ns = _run({})
    assert ns == "test"
    assert opt.image == DEFAULT_IMAGE
    assert opt.replicas == 1
    assert (opt.requests_cpu, opt.requests_memory, opt.limits_cpu, opt.limits_memory) == ("", "", "", "")
    assert opt.rootless is False
    assert not opt.node_selector
    assert not opt.custom_annotations
    assert not opt.custom_labels
    assert not opt.tolerations
    assert loadbalance == LOADBALANCE_STICKY
    assert opt.qemu.install is False
    assert opt.qemu.image == QEMU_IMAGE


def test_rootless_override():
    opt, loadbalance, ns = _run({"rootless": "true", "loadbalance": "sticky"})
    assert ns == "test"
    assert opt.image == DEFAULT_ROOTLESS_IMAGE
    assert opt.replicas == 1
    assert opt.rootless is True
    assert not opt.tolerations
    assert loadbalance == LOADBALANCE_STICKY
    assert opt.qemu.install is False
    assert opt.qemu.image == QEMU_IMAGE


@pytest.mark.parametrize(
    "opts",
    [
        {"replicas": "invalid"},
        {"rootless": "invalid"},
        {"tolerations": "key=foo,value=bar,invalid=foo2"},
        {"tolerations": "key=foo,value=bar,tolerationSeconds=invalid"},
        {"annotations": "key,value"},
        {"labels": "key=value=foo"},
        {"loadbalance": "invalid"},
        {"qemu.install": "invalid"},
        {"invalid": "foo"},
    ],
)
def test_invalid_options(opts):
    with pytest.raises(KubeOptionError):
        _run(opts)


def test_split_multi_values_strips_quotes():
    assert split_multi_values('"a=1,b=2"', ",", "=") == {"a": "1", "b": "2"}


def test_split_multi_values_rejects_bad_pair():
    with pytest.raises(KubeOptionError, match="invalid key-value pair"):
        split_multi_values("a=1,b", ",", "=")


def test_deployment_name():
    assert buildx_name_to_deployment_name("buildx_buildkit_loving_mendeleev0") == "loving-mendeleev0"


def test_deployment_name_requires_prefix():
    with pytest.raises(KubeOptionError):
        buildx_name_to_deployment_name("loving_mendeleev0")