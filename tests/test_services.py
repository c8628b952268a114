"""
Tests for service wiring.
"""

import pytest

from tmevents.config import ConfigurationError, Settings
from tmevents.services import Services, build_session
from tmevents.upstream.auth import NadeoRefreshProvider, UbisoftTicketProvider
from conftest import FakeSession


class TestServices:
    """Tests for Services construction."""

    def test_refresh_token_only(self, tmp_path):
        settings = Settings(nadeo_refresh_token="r", public_dir=tmp_path)
        services = Services(settings, session=FakeSession())

        assert isinstance(services.live_tokens.provider, NadeoRefreshProvider)
        assert [s.name for s in services.name_strategies()] == [
            "core-get-csv", "live-get-csv", "live-post-array",
        ]
        assert services.cotd_store.directory == tmp_path / "data" / "cotd"
        assert services.ledger_resolver.cache.path == tmp_path / "data" / "cotd" / "_names-cache.json"
        assert services.resident_resolver.cache.path is None
        assert services.today.path == tmp_path / "cotd.json"
        assert services.today.ledger is services.ledger
        assert services.players.oauth_tokens is None

    def test_ubisoft_login_and_oauth(self, tmp_path):
        settings = Settings(
            ubi_email="e", ubi_password="p", ubi_app_id="a",
            tm_client_id="id", tm_client_secret="secret", public_dir=tmp_path,
        )
        services = Services(settings, session=FakeSession())

        assert isinstance(services.live_tokens.provider, UbisoftTicketProvider)
        assert services.core_tokens is None
        assert [s.name for s in services.name_strategies()] == [
            "live-get-csv", "live-post-array", "oauth-get-array",
        ]
        assert services.players.oauth_tokens is services.oauth_tokens

    def test_snapshot_ttl_from_settings(self, tmp_path):
        settings = Settings(nadeo_refresh_token="r", public_dir=tmp_path, wr_ttl_seconds=5)
        assert Services(settings, session=FakeSession()).snapshots.ttl_s == 5

    def test_context_manager_closes_session(self, tmp_path):
        session = FakeSession()
        with Services(Settings(nadeo_refresh_token="r", public_dir=tmp_path), session=session):
            pass
        assert session.closed

    def test_from_env_requires_credentials(self):
        with pytest.raises(ConfigurationError):
            Services.from_env({})

    def test_from_env(self, tmp_path):
        services = Services.from_env({"NADEO_REFRESH_TOKEN": "r", "PUBLIC_DIR": str(tmp_path)})
        assert services.settings.nadeo_refresh_token == "r"
        services.close()


class TestBuildSession:
    """Tests for build_session."""

    def test_user_agent(self):
        assert build_session("tmevents-test/1.0").headers["User-Agent"] == "tmevents-test/1.0"
