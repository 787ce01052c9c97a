"""Builder instance store, driver registry, Kubernetes manifests and monitor commands for BuildKit builders."""

__version__ = "0.1.0"