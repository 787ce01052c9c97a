# buildrig

buildrig is a library with the building blocks for managing BuildKit builder instances:
it stores builders on disk, keeps a registry of driver factories, checks driver options,
generates Kubernetes manifests, and provides the commands of an interactive monitor console.

## Modules

- **`buildrig.store`**: `Store` is a directory of builder instances. `Store.txn()` is a
  context manager. It holds a file lock and yields a `Txn`, which has `list`,
  `node_group_by_name`, `save`, `remove`, `set_current`, `current` and the
  last-activity helpers. `current(key)` returns the builder selected for an endpoint key.
  It honours global selections, falls back to the key's stored default, and returns
  `None` when nothing is selected. `remove` also deletes the builder's local build refs.
- **`buildrig.nodegroup`**: `NodeGroup` and `Node`.
  - `NodeGroup.update` adds a node or changes one.
  - `NodeGroup.leave` removes a node. It refuses to remove the last one.
  - `to_dict` and `from_dict` give the stored form.
  - `validate_name` checks a name and lower-cases it. It raises `InvalidNameError` on a bad name.
  - A platform belongs to at most one node. When a node is updated, its platforms are removed
    from the other nodes. Duplicate endpoints raise `ValueError`.
- **`buildrig.localstate`**: `LocalState` saves and reads build refs (`State`) for each builder
  and node, and bake groups (`StateGroup`). Removing a builder or node also removes the groups
  whose refs were all on it.
- **`buildrig.platforms`**: `Platform`, `parse_platform`, `parse_platforms` and
  `format_platforms`.
  - They handle `os/arch/variant` strings with the usual normalisation: `x86_64` becomes
    `amd64`, `aarch64` becomes `arm64`, and `arm` becomes `arm/v7`.
  - `local` stands for the host platform.
- **`buildrig.semver`** and **`buildrig.mobyversion`**: `Version` and `Constraint` implement
  loose semantic versions and range constraints. `resolve_buildkit_version` maps a Docker
  Engine version to the BuildKit version bundled with it. It returns `""` when the version is unknown.
- **`buildrig.driver`**: `Status`, `Feature`, `Info`, `InitConfig`, and the abstract
  `Factory` and `Driver` classes. It also has the factory registry: `register`,
  `get_factory`, `get_factories` and `get_default_factory`. `get_default_factory` picks
  the factory with the lowest priority. `get_driver` returns a `DriverHandle`, which
  creates its client once. `boot` bootstraps a driver with retries.
- **`buildrig.remote`**: `validate_endpoint` accepts the schemes `tcp`, `unix`, `ssh`,
  `docker-container` and `kube-pod`. `endpoint_priority` gives an endpoint's priority.
  `parse_remote_options` checks a remote configuration and returns `TLSOptions` or `None`.
- **`buildrig.kubeopts`**: `process_driver_opts` validates the Kubernetes driver options
  (image, namespace, replicas, resources, rootless, node selector, annotations, labels,
  tolerations, loadbalance, qemu) and turns them into a `DeploymentOpt`.
  `buildx_name_to_deployment_name` and `split_multi_values` are helpers.
- **`buildrig.manifest`**: `new_deployment` builds the Deployment manifest and its
  ConfigMaps from a `DeploymentOpt`, as plain dicts. Rootless mode, qemu init containers,
  tolerations and resource quantities are included. `parse_quantity` and
  `split_config_files` are helpers.
- **`buildrig.monitor`**: the abstract `Monitor` interface and the console commands
  `AttachCommand`, `DisconnectCommand`, `ExecCommand`, `KillCommand`, `ListCommand`,
  `PsCommand` and `RollbackCommand`. `print_help` and `print_command_help` write the help
  output.

## Example

```python
from buildrig.store import Store
from buildrig.nodegroup import NodeGroup

store = Store("/tmp/buildrig-state")
with store.txn() as txn:
    group = NodeGroup(name="mybuilder", driver="docker-container")
    group.update("mybuilder0", "unix:///var/run/docker.sock", ["linux/amd64"],
                 True, False, None, None, None)
    txn.save(group)
    txn.set_current("my-endpoint", "mybuilder", False, True)
    print(txn.current("my-endpoint").name)  # mybuilder
```

```python
from buildrig.mobyversion import resolve_buildkit_version

print(resolve_buildkit_version("20.10.16"))  # v0.8.2+bc07b2b8
```

```python
from buildrig.remote import validate_endpoint

validate_endpoint("tcp://buildkitd:1234")  # raises ValueError on an unknown scheme
```

## What the package does not do

- **No drivers.** It ships no concrete drivers and registers no factories. You implement
  `Factory` and `Driver` and call `register`. Until you do, `get_default_factory` raises
  `DriverError("no drivers available")`. Nothing in the package connects to Docker,
  Kubernetes or a BuildKit daemon.
- **No cluster access.** Manifests are returned as dicts and are never applied to a cluster.
- **No interactive console.** `buildrig.monitor` provides the commands and the help
  output, but no console loop and no IO switching. A caller supplies a `Monitor`
  implementation and dispatches the commands.
- **No command-line program.**

## Running the tests

```
pip install ".[test]"
pytest
```