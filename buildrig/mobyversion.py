"""Mapping of Docker engine versions to the embedded BuildKit version."""

from __future__ import annotations

from buildrig.semver import Constraint, Version

MOBY_BUILDKIT_VERSIONS: tuple[tuple[str, str], ...] = (
    (">= 18.06.0-0, < 18.06.1-0", "v0.0.0+9acf51e"),
    (">= 18.06.1-0, < 18.09.0-0", "v0.0.0+98f1604"),
    (">= 18.09.0-0, < 18.09.1-0", "v0.0.0+c7bb575"),
    ("~18.09.1-0", "v0.3.3"),
    ("> 18.09.1-0, < 18.09.6-0", "v0.3.3+d9f7592"),
    (">= 18.09.6-0, < 18.09.7-0", "v0.4.0+ed4da8b"),
    (">= 18.09.7-0, < 19.03.0-0", "v0.4.0+05766c5"),
    ("<= 19.03.0-beta2", "v0.4.0+b302896"),
    ("<= 19.03.0-beta3", "v0.4.0+8818c67"),
    ("<= 19.03.0-beta5", "v0.5.1+f238f1e"),
    ("< 19.03.2-0", "v0.5.1+1f89ec1"),
    ("<= 19.03.2-beta1", "v0.6.1"),
    (">= 19.03.2-0, < 19.03.3-0", "v0.6.1+588c73e"),
    (">= 19.03.3-0, < 19.03.5-beta2", "v0.6.2"),
    ("<= 19.03.5-rc1", "v0.6.2+ff93519"),
    ("<= 19.03.5", "v0.6.3+928f3b4"),
    ("<= 19.03.6-rc1", "v0.6.3+926935b"),
    (">= 19.03.6-rc2, < 19.03.7-0", "v0.6.3+57e8ad5"),
    (">= 19.03.7-0, < 19.03.9-0", "v0.6.4"),
    (">= 19.03.9-0, < 19.03.13-0", "v0.6.4+a7d7b7f"),
    ("<= 19.03.13-beta2", "v0.6.4+da1f4bf"),
    ("<= 19.03.14", "v0.6.4+df89d4d"),
    ("< 20.10.0", "v0.6.4+396bfe2"),
    ("20.10.0-0 - 20.10.2-0", "v0.8.1"),
    (">= 20.10.3-0, < 20.10.4-0", "v0.8.1+68bb095"),
    ("20.10.4-0 - 20.10.6", "v0.8.2"),
    ("20.10.7-0 - 20.10.10-0", "v0.8.2+244e8cde"),
    ("20.10.11-0 - 20.10.18-0", "v0.8.2+bc07b2b8"),
    (">= 20.10.19-0, < 20.10.20-0", "v0.8.2+3a1eeca5"),
    (">= 20.10.20-0, < 20.10.21-0", "v0.8.2+c0149372"),
    (">= 20.10.21-0, <= 20.10.23", "v0.8.2+eeb7b65"),
    ("~20.10-0", "v0.8+unknown"),
    ("~22.06-0", "v0.10.3"),
    (">= 23.0.0-0, < 23.0.1-0", "v0.10.6"),
    ("23.0.1", "v0.10.6+4f0ee09"),
    (">= 23.0.2-0, < 23.0.4-0", "v0.10.6+70f2ad5"),
    (">= 23.0.4-0, < 23.0.7-0", "v0.10.6+d52b2d5"),
    ("~23-0", "v0.10+unknown"),
)

_RESOLVERS: tuple[tuple[Constraint, str], ...] = tuple(
    (Constraint(constraint), buildkit) for constraint, buildkit in MOBY_BUILDKIT_VERSIONS
)


def resolve_buildkit_version(version: str) -> str:
    """BuildKit version bundled with a Docker engine, or "" when unknown."""
    moby = Version(version)
    for constraint, buildkit in _RESOLVERS:
        if constraint.check(moby):
            return buildkit
    return ""