from __future__ import annotations

import pytest

from buildrig.driver import DriverError, InitConfig
from buildrig.remote import (
    TLSOptions,
    endpoint_priority,
    parse_remote_options,
    validate_endpoint,
)


@pytest.mark.parametrize(
    "endpoint",
    [
        "tcp://buildkitd:1234",
        "unix:///run/buildkit/buildkitd.sock",
        "ssh://host",
        "docker-container://buildkitd",
        "kube-pod://buildkitd-0",
    ],
)
def test_valid_endpoints(endpoint):
    validate_endpoint(endpoint)
    assert endpoint_priority(endpoint) == 20


@pytest.mark.parametrize("endpoint", ["http://host", "", "default"])
def test_invalid_endpoints(endpoint):
    with pytest.raises(ValueError, match="unrecognized url scheme"):
        validate_endpoint(endpoint)
    assert endpoint_priority(endpoint) == 90


def test_no_options_means_no_tls():
    assert parse_remote_options(InitConfig(endpoint_addr="tcp://h:1")) is None


def test_files_not_supported():
    with pytest.raises(DriverError, match="config file"):
        parse_remote_options(InitConfig(files={"buildkitd.toml": b""}))


def test_flags_not_supported():
    with pytest.raises(DriverError, match="buildkit flags"):
        parse_remote_options(InitConfig(buildkit_flags=["--debug"]))


def test_invalid_option():
    with pytest.raises(DriverError, match="invalid driver option bogus"):
        parse_remote_options(InitConfig(driver_opts={"bogus": "1"}))


def test_relative_path_rejected():
    with pytest.raises(DriverError, match="non-absolute path 'ca.pem' provided for cacert"):
        parse_remote_options(InitConfig(driver_opts={"cacert": "ca.pem"}))


def test_full_tls_options():
    opts = {
        "servername": "buildkitd",
        "cacert": "/certs/ca.pem",
        "cert": "/certs/cert.pem",
        "key": "/certs/key.pem",
    }
    tls = parse_remote_options(InitConfig(endpoint_addr="tcp://h:1", driver_opts=opts))
    assert tls == TLSOptions("buildkitd", "/certs/ca.pem", "/certs/cert.pem", "/certs/key.pem")


def test_server_name_guessed_from_endpoint():
    config = InitConfig(
        endpoint_addr="tcp://BuildKitd.example.com:1234",
        driver_opts={"cacert": "/certs/ca.pem"},
    )
    tls = parse_remote_options(config)
    assert tls.server_name == "BuildKitd.example.com"
    assert tls.ca_cert == "/certs/ca.pem"


def test_missing_cacert():
    with pytest.raises(DriverError, match="tls enabled, but missing keys cacert"):
        parse_remote_options(InitConfig(driver_opts={"servername": "x"}))


def test_cert_without_key():
    config = InitConfig(driver_opts={"cacert": "/c/ca.pem", "cert": "/c/cert.pem"})
    with pytest.raises(DriverError, match="missing keys key"):
        parse_remote_options(config)


def test_key_without_cert_and_cacert():
    config = InitConfig(driver_opts={"key": "/c/key.pem"})
    with pytest.raises(DriverError, match="missing keys cacert, cert"):
        parse_remote_options(config)