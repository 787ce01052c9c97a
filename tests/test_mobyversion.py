import pytest

from buildrig.mobyversion import MOBY_BUILDKIT_VERSIONS, resolve_buildkit_version
from buildrig.semver import Constraint, SemverError


@pytest.mark.parametrize("constraint", [c for c, _ in MOBY_BUILDKIT_VERSIONS])
def test_constraint_parses(constraint):
    assert str(Constraint(constraint)) == constraint


@pytest.mark.parametrize(
    ("moby_version", "expected"),
    [
        ("18.06.1-ce", "v0.0.0+98f1604"),
        ("18.09.1-beta1", "v0.3.3"),
        ("19.03.0-beta1", "v0.4.0+b302896"),
        ("19.03.5-beta2", "v0.6.2+ff93519"),
        ("19.03.13-beta1", "v0.6.4+da1f4bf"),
        ("19.03.13-beta2", "v0.6.4+da1f4bf"),
        ("19.03.13", "v0.6.4+df89d4d"),
        ("20.10.3-rc.1", "v0.8.1+68bb095"),
        ("20.10.3", "v0.8.1+68bb095"),
        ("20.10.4", "v0.8.2"),
        ("20.10.16", "v0.8.2+bc07b2b8"),
        ("20.10.19", "v0.8.2+3a1eeca5"),
        ("20.10.23", "v0.8.2+eeb7b65"),
        ("20.10.24", "v0.8+unknown"),
        ("20.10.50", "v0.8+unknown"),
        ("22.06.0-beta.0", "v0.10.3"),
        ("22.06.0", "v0.10.3"),
        ("23.0.0-rc.4", "v0.10.6"),
        ("23.0.0", "v0.10.6"),
        ("23.0.1", "v0.10.6+4f0ee09"),
        ("23.0.2-rc.1", "v0.10.6+70f2ad5"),
        ("23.0.3", "v0.10.6+70f2ad5"),
        ("23.0.5", "v0.10.6+d52b2d5"),
        ("23.0.7", "v0.10+unknown"),
    ],
)
def test_resolve_buildkit_version(moby_version, expected):
    assert resolve_buildkit_version(moby_version) == expected


def test_unknown_future_version_resolves_to_empty():
    assert resolve_buildkit_version("99.0.0") == ""


def test_invalid_version_raises():
    with pytest.raises(SemverError):
        resolve_buildkit_version("not-a-version")