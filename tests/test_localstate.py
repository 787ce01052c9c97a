import json

import pytest

from buildrig.localstate import LocalState, State, StateGroup

BUILDER = "builder"
NODE = "builder0"

STATE_REF_ID = "32n3ffqrxjw41ok5zxd2qhume"
STATE_REF = State(
    target="default",
    local_path="/home/foo/projects/bake-action",
    dockerfile_path="/home/foo/projects/bake-action/dev.Dockerfile",
)

GROUP_ID = "kvqs0sgly2rmitz84r25u9qd0"
GROUP = StateGroup(
    definition=(
        b'{"group":{"default":{"targets":["pre-checkin"]},"pre-checkin":{"targets":'
        b'["vendor-update","format","build"]}},"target":{"build":{"context":".",'
        b'"dockerfile":"dev.Dockerfile","target":"build-update","platforms":'
        b'["linux/amd64"],"output":["."]},"format":{"context":".","dockerfile":'
        b'"dev.Dockerfile","target":"format-update","platforms":["linux/amd64"],'
        b'"output":["."]},"vendor-update":{"context":".","dockerfile":"dev.Dockerfile",'
        b'"target":"vendor-update","platforms":["linux/amd64"],"output":["."]}}}'
    ),
    targets=["pre-checkin"],
    inputs=["*.platform=linux/amd64"],
    refs=[
        "builder/builder0/hx2qf1w11qvz1x3k471c5i8xw",
        "builder/builder0/968zj0g03jmlx0s8qslnvh6rl",
        "builder/builder0/naf44f9i1710lf7y12lv5hb1z",
    ],
)

GROUP_REFS = {
    "hx2qf1w11qvz1x3k471c5i8xw": "format",
    "968zj0g03jmlx0s8qslnvh6rl": "build",
    "naf44f9i1710lf7y12lv5hb1z": "vendor-update",
}


def _group_state(target):
    return State(
        target=target,
        local_path="/home/foo/projects/bake-action",
        dockerfile_path="/home/foo/projects/bake-action/dev.Dockerfile",
        group_ref=GROUP_ID,
    )


@pytest.fixture
def ls(tmp_path):
    state = LocalState(tmp_path)
    state.save_ref(BUILDER, NODE, STATE_REF_ID, STATE_REF)
    state.save_group(GROUP_ID, GROUP)
    for ref_id, target in GROUP_REFS.items():
        state.save_ref(BUILDER, NODE, ref_id, _group_state(target))
    return state


def test_new(tmp_path):
    state = LocalState(tmp_path)
    assert (tmp_path / "refs").is_dir()
    assert state.root == tmp_path


def test_new_empty_root():
    with pytest.raises(ValueError, match="root dir empty"):
        LocalState("")


def test_read_ref(ls):
    assert ls.read_ref(BUILDER, NODE, STATE_REF_ID) == STATE_REF


def test_read_group_ref(ls):
    assert ls.read_ref(BUILDER, NODE, "968zj0g03jmlx0s8qslnvh6rl") == _group_state("build")


def test_read_group(ls):
    assert ls.read_group(GROUP_ID) == GROUP


def test_read_missing_ref(ls):
    with pytest.raises(FileNotFoundError):
        ls.read_ref(BUILDER, NODE, "missing")


def test_remove_builder(ls, tmp_path):
    ls.remove_builder(BUILDER)
    assert not (tmp_path / "refs" / BUILDER).exists()
    with pytest.raises(FileNotFoundError):
        ls.read_group(GROUP_ID)


def test_remove_builder_node(ls, tmp_path):
    ls.remove_builder_node(BUILDER, NODE)
    assert not (tmp_path / "refs" / BUILDER / NODE).exists()
    with pytest.raises(FileNotFoundError):
        ls.read_ref(BUILDER, NODE, STATE_REF_ID)
    with pytest.raises(FileNotFoundError):
        ls.read_group(GROUP_ID)


def test_remove_builder_node_keeps_shared_group(ls):
    shared = StateGroup(
        definition=b"{}",
        refs=GROUP.refs + ["other/other0/abc"],
    )
    ls.save_group(GROUP_ID, shared)
    ls.remove_builder_node(BUILDER, NODE)
    assert ls.read_group(GROUP_ID) == shared


def test_remove_unknown_builder_leaves_others(ls):
    ls.remove_builder("unknown")
    ls.remove_builder_node(BUILDER, "unknown0")
    assert ls.read_ref(BUILDER, NODE, STATE_REF_ID) == STATE_REF


@pytest.mark.parametrize(
    "args, message",
    [
        (("", NODE, "id"), "builder name empty"),
        ((BUILDER, "", "id"), "node name empty"),
        ((BUILDER, NODE, ""), "ref ID empty"),
    ],
)
def test_read_ref_validation(ls, args, message):
    with pytest.raises(ValueError, match=message):
        ls.read_ref(*args)


def test_save_ref_validation(ls):
    with pytest.raises(ValueError, match="ref ID empty"):
        ls.save_ref(BUILDER, NODE, "", STATE_REF)


def test_remove_validation(ls):
    with pytest.raises(ValueError, match="builder name empty"):
        ls.remove_builder("")
    with pytest.raises(ValueError, match="node name empty"):
        ls.remove_builder_node(BUILDER, "")


def test_saved_ref_layout(tmp_path):
    state = LocalState(tmp_path)
    state.save_ref(BUILDER, NODE, "layoutref", STATE_REF)
    raw = json.loads((tmp_path / "refs" / BUILDER / NODE / "layoutref").read_text())
    assert raw == {
        "Target": "default",
        "LocalPath": "/home/foo/projects/bake-action",
        "DockerfilePath": "/home/foo/projects/bake-action/dev.Dockerfile",
    }
    assert state.read_ref(BUILDER, NODE, "layoutref") == STATE_REF


def test_group_round_trip_without_optional_fields(ls):
    group = StateGroup(definition=b"", refs=[])
    ls.save_group("empty", group)
    assert ls.read_group("empty") == group