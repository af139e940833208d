"""
Test config

Validate loading of config.json, resolution of the home and cache directories and parsing of
node addresses.

*** Fixtures ***
- config_dir (defined below)
- tmp_path, monkeypatch (defined by Pytest)
"""

import json
import unittest.mock
from pathlib import Path

import pytest

from pollenwall.config import (
    DEFAULT_ADDRESS,
    PollenwallConfig,
    PollenwallConfigError,
    config_path,
    load_config,
    parse_address,
)


@pytest.fixture
def config_dir(tmp_path, monkeypatch) -> Path:
    directory = tmp_path / "config"
    directory.mkdir()
    monkeypatch.setenv("POLLENWALL_CONFIG_DIR", str(directory))
    return directory


def test_config_path(config_dir):
    assert config_path() == config_dir / "config.json"


def test_config_path_default(monkeypatch):
    monkeypatch.delenv("POLLENWALL_CONFIG_DIR", raising=False)

    assert config_path() == Path.home() / ".config" / "pollenwall" / "config.json"


def test_load_config_missing_file(config_dir):
    assert load_config() == PollenwallConfig()


def test_load_config(config_dir):
    (config_dir / "config.json").write_text(
        json.dumps({"interval": 20, "keep_history": True, "cache_dir": "~/pollens"})
    )

    config = load_config()

    assert config.interval == 20
    assert config.keep_history is True
    assert config.cache_dir == Path.home() / "pollens"
    assert config.address == DEFAULT_ADDRESS


@pytest.mark.parametrize(
    "content, message",
    [
        ("{not json", "issue reading"),
        ("[1, 2]", "JSON object"),
        ('{"interval": 5, "colour": "purple"}', "colour"),
        ('{"interval": 0}', "'interval' must be at least"),
        ('{"interval": -5}', "'interval' must be at least"),
        ('{"interval": "10"}', "'interval' must be a number"),
        ('{"interval": true}', "'interval' must be a number"),
        ('{"listen_window": -1}', "'listen_window' must be at least"),
        ('{"stale_cycles": null}', "'stale_cycles' must be a number"),
        ('{"stale_cycles": 2.5}', "'stale_cycles' must be a number"),
        ('{"max_downloads": 0}', "'max_downloads' must be at least"),
        ('{"request_timeout": 0}', "'request_timeout' must be at least"),
        ('{"keep_history": "yes"}', "'keep_history' must be true or false"),
        ('{"address": 5005}', "'address' must be a string"),
        ('{"cache_dir": ["a", "b"]}', "'cache_dir' must be a path"),
    ],
)
def test_load_config_invalid(config_dir, content, message):
    (config_dir / "config.json").write_text(content)

    with pytest.raises(PollenwallConfigError, match=message):
        load_config()


def test_override_is_checked_too():
    with pytest.raises(PollenwallConfigError, match="'interval' must be at least"):
        PollenwallConfig().override(interval=0.5)


def test_override_ignores_unset_values():
    config = PollenwallConfig(interval=20).override(interval=None, address="http://localhost:5001")

    assert config.interval == 20
    assert config.address == "http://localhost:5001"


def test_resolve_with_home(tmp_path):
    config = PollenwallConfig(home=tmp_path).resolve()

    assert config.home == tmp_path
    assert config.cache_dir == tmp_path / ".pollenwall"


def test_resolve_keeps_cache_dir(tmp_path):
    config = PollenwallConfig(home=tmp_path, cache_dir=tmp_path / "elsewhere").resolve()

    assert config.cache_dir == tmp_path / "elsewhere"


def test_resolve_without_home():
    with unittest.mock.patch.object(Path, "home", side_effect=RuntimeError("no HOME")):
        with pytest.raises(PollenwallConfigError, match="--home"):
            PollenwallConfig().resolve()


@pytest.mark.parametrize(
    "address, expected",
    [
        (DEFAULT_ADDRESS, "http://65.108.44.19:5005/api/v0"),
        ("/ip6/::1/tcp/5001", "http://[::1]:5001/api/v0"),
        ("/dns4/node.example.com/tcp/443/https", "https://node.example.com:443/api/v0"),
        ("http://localhost:5001", "http://localhost:5001/api/v0"),
        ("https://node.example.com/custom/api/", "https://node.example.com/custom/api"),
    ],
)
def test_parse_address(address, expected):
    assert parse_address(address) == expected


@pytest.mark.parametrize(
    "address",
    [
        "",
        "nope",
        "ftp://node.example.com",
        "http://node.example.com:notaport",
        "/ip4/65.108.44.19/udp/5005",
        "/ip4/999.1.1.1/tcp/5005",
        "/ip4/65.108.44.19/tcp/99999",
        "/ip4/65.108.44.19/tcp/5005/ws",
        "/onion/abcdef/tcp/80",
    ],
)
def test_parse_address_invalid(address):
    with pytest.raises(PollenwallConfigError):
        parse_address(address)
