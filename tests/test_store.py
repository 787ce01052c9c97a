import threading

import pytest

from buildrig.nodegroup import InvalidNameError, Node, NodeGroup
from buildrig.store import Store


@pytest.fixture
def store(tmp_path):
    return Store(tmp_path)


def test_empty_startup(store):
    with store.txn() as txn:
        assert txn.current("foo") is None


def test_store_creates_directories(tmp_path):
    Store(tmp_path)
    assert (tmp_path / "instances").is_dir()
    assert (tmp_path / "defaults").is_dir()
    assert (tmp_path / "activity").is_dir()


def test_node_locking(store):
    ready = threading.Event()
    seen_by_other = []

    def other():
        with store.txn() as other_txn:
            seen_by_other.extend(ng.name for ng in other_txn.list())
        ready.set()

    worker = threading.Thread(target=other)
    with store.txn() as txn:
        worker.start()
        waited = not ready.wait(0.1)
        txn.save(NodeGroup(name="locked", driver="d"))
        names_inside = [ng.name for ng in txn.list()]
    completed = ready.wait(2)
    worker.join()

    assert waited, "transaction should have waited"
    assert names_inside == ["locked"]
    assert completed, "transaction should have completed"
    assert seen_by_other == ["locked"]


def test_node_management(store):
    with store.txn() as txn:
        with pytest.raises(InvalidNameError, match="invalid name"):
            txn.save(NodeGroup(name="foo/bar", driver="driver"))

        txn.save(NodeGroup(name="mybuild", driver="mydriver"))
        ng = txn.node_group_by_name("mybuild")
        assert ng.name == "mybuild"
        assert ng.driver == "mydriver"
        assert ng.last_activity is not None and ng.last_activity.year > 2000

        with pytest.raises(FileNotFoundError):
            txn.node_group_by_name("mybuild2")

        txn.save(NodeGroup(name="mybuild2", driver="mydriver2"))
        ng = txn.node_group_by_name("mybuild2")
        assert ng.name == "mybuild2"
        assert ng.driver == "mydriver2"

        txn.save(NodeGroup(name="mybuild", driver="mydriver-mod"))
        ng = txn.node_group_by_name("mybuild")
        assert ng.name == "mybuild"
        assert ng.driver == "mydriver-mod"

        assert len(txn.list()) == 2

        # setting current
        txn.set_current("foo", "mybuild", False, False)
        assert txn.current("foo").name == "mybuild"
        assert txn.current("foo").name == "mybuild"
        assert txn.current("bar") is None
        assert txn.current("foo") is None

        # set with default
        txn.set_current("foo", "mybuild", False, True)
        assert txn.current("foo").name == "mybuild"
        assert txn.current("bar") is None
        assert txn.current("foo").name == "mybuild"

        txn.set_current("foo", "mybuild2", False, True)
        assert txn.current("foo").name == "mybuild2"

        txn.set_current("bar", "mybuild", False, False)
        assert txn.current("bar").name == "mybuild"
        assert txn.current("foo").name == "mybuild2"

        # set global
        txn.set_current("foo", "mybuild2", True, False)
        assert txn.current("foo").name == "mybuild2"
        assert txn.current("bar").name == "mybuild2"

        txn.set_current("bar", "mybuild", False, False)
        assert txn.current("bar").name == "mybuild"
        assert txn.current("foo") is None

        txn.set_current("bar", "mybuild", False, True)
        txn.set_current("foo", "mybuild2", False, False)

        # removal
        txn.remove("mybuild2")
        with pytest.raises(FileNotFoundError):
            txn.node_group_by_name("mybuild2")

        assert txn.current("foo") is None
        assert txn.current("bar").name == "mybuild"


def test_node_invalid_name(store):
    with store.txn() as txn:
        with pytest.raises(InvalidNameError):
            txn.node_group_by_name("123builder")
        with pytest.raises(InvalidNameError):
            txn.save(NodeGroup(name="123builder", driver="mydriver"))


def test_list_is_sorted_by_name(store):
    with store.txn() as txn:
        for name in ("zeta", "alpha", "mid"):
            txn.save(NodeGroup(name=name, driver="d"))
        assert [ng.name for ng in txn.list()] == ["alpha", "mid", "zeta"]


def test_nodes_round_trip(store):
    group = NodeGroup(
        name="multi",
        driver="docker-container",
        nodes=[Node(name="multi0", endpoint="unix:///run/a.sock", flags=["--debug"], files={"a.toml": b"x=1"})],
    )
    with store.txn() as txn:
        txn.save(group)
        loaded = txn.node_group_by_name("multi")
    assert loaded.nodes[0].name == "multi0"
    assert loaded.nodes[0].endpoint == "unix:///run/a.sock"
    assert loaded.nodes[0].flags == ["--debug"]
    assert loaded.nodes[0].files == {"a.toml": b"x=1"}


def test_last_activity_missing_is_none(store):
    with store.txn() as txn:
        assert txn.get_last_activity(NodeGroup(name="never")) is None


def test_remove_last_activity(store):
    with store.txn() as txn:
        group = NodeGroup(name="act", driver="d")
        txn.save(group)
        assert txn.get_last_activity(group) is not None
        txn.remove_last_activity("act")
        assert txn.get_last_activity(group) is None