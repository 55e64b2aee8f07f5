"""Tests for application wiring."""

import pytest
import yaml

from lbcfg.bot import ShellBot, SignalBot
from lbcfg.config import Config
from lbcfg.handler import LbcfgHandler
from lbcfg.main import build_handler, build_transport


@pytest.fixture
def config(tmp_path, monkeypatch):
    monkeypatch.setenv("SF_TEST_KEY", "secret")
    settings = {
        "adapter": "shell",
        "allowed_numbers": ["+15550001234"],
        "lbcfg": {
            "command_prefix": "lb",
            "lb_hash": {"sf": {"test": {"lita": [42]}}},
            "credentials": [
                {"region": "sf", "env": "test", "username": "ops", "key_env": "SF_TEST_KEY"},
            ],
        },
    }
    (tmp_path / "settings.yaml").write_text(yaml.safe_dump(settings))
    return Config(config_dir=tmp_path)


def test_build_handler_wires_prefix_and_credentials(config):
    """The handler uses the configured prefix and registered credentials."""
    handler = build_handler(config)
    assert isinstance(handler, LbcfgHandler)
    assert handler.routes.prefix == "lb"
    assert handler.router.command_prefix == "lb"
    assert "sf-test" in handler.router.client_factory


def test_build_transport_follows_adapter(config):
    """The adapter setting picks the transport."""
    handler = build_handler(config)
    assert isinstance(build_transport(config, handler), ShellBot)

    config.settings["adapter"] = "signal"
    bot = build_transport(config, handler)
    assert isinstance(bot, SignalBot)
    assert bot.allowed_numbers == ["+15550001234"]


def test_build_handler_tolerates_missing_credentials(config):
    """Environments without credentials are reported, not fatal."""
    config.settings["lbcfg"]["lb_hash"]["ny"] = {"prod": {"lita": [7]}}
    handler = build_handler(config)
    assert handler.router.client_factory.missing_for(config.tree) == ["ny-prod"]
