"""Tests for session provider loading."""

from collections import OrderedDict
from os.path import join

import pytest

from playtime_farmer.core.config import FarmerSettings, FleetConfig
from playtime_farmer.core.exceptions import ConfigurationError, ProviderLoadError
from playtime_farmer.core.infra.runners import resolve_provider_target
from playtime_farmer.services.session.provider import SessionProvider, load_provider_factory


def test_loads_class():
    assert load_provider_factory("collections:OrderedDict") is OrderedDict


def test_loads_nested_attribute():
    assert load_provider_factory("os:path.join") is join


def test_loads_abstract_provider_class():
    assert (
        load_provider_factory("playtime_farmer.services.session.provider:SessionProvider")
        is SessionProvider
    )


@pytest.mark.parametrize("target", ["collections", ":OrderedDict", "collections:", ""])
def test_malformed_target(target):
    with pytest.raises(ProviderLoadError, match="package.module:attribute"):
        load_provider_factory(target)


def test_missing_module():
    with pytest.raises(ProviderLoadError) as exc_info:
        load_provider_factory("no_such_provider_module:Provider")
    assert exc_info.value.target == "no_such_provider_module:Provider"


def test_missing_attribute():
    with pytest.raises(ProviderLoadError, match="not found"):
        load_provider_factory("collections:NoSuchThing")


def test_not_callable():
    with pytest.raises(ProviderLoadError, match="not callable"):
        load_provider_factory("os:sep")


def test_abstract_provider_cannot_be_instantiated():
    with pytest.raises(TypeError):
        SessionProvider()


class TestResolveProviderTarget:
    """Command line, then fleet file, then environment."""

    @pytest.fixture
    def config(self):
        return FleetConfig.model_validate(
            {
                "provider": "from.config:Provider",
                "accounts": [{"account_id": "a", "password": "p", "activities": [1]}],
            }
        )

    def test_override_wins(self, config):
        settings = FarmerSettings(_env_file=None, provider="from.env:Provider")
        assert resolve_provider_target(config, settings, "from.cli:Provider") == "from.cli:Provider"

    def test_config_before_settings(self, config):
        settings = FarmerSettings(_env_file=None, provider="from.env:Provider")
        assert resolve_provider_target(config, settings) == "from.config:Provider"

    def test_settings_fallback(self, config):
        config.provider = ""
        settings = FarmerSettings(_env_file=None, provider="from.env:Provider")
        assert resolve_provider_target(config, settings) == "from.env:Provider"

    def test_nothing_configured(self, config, monkeypatch):
        monkeypatch.delenv("PROVIDER", raising=False)
        config.provider = None
        with pytest.raises(ConfigurationError, match="No session provider"):
            resolve_provider_target(config, FarmerSettings(_env_file=None))
