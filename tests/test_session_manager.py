"""Tests for the login/refresh decision and its persistence guarantees."""

from __future__ import annotations

import pathlib
import time
import urllib.parse
from unittest.mock import MagicMock

import httpx
import pytest

from aurora_launcher.auth.session import CredentialBundle
from aurora_launcher.auth.session_manager import (
    InteractiveLogin,
    SessionManager,
    SessionState,
    classify_session,
    should_refresh,
)
from aurora_launcher.auth.session_store import SessionStore
from aurora_launcher.auth.token_chain import AuthError, ChainStage
from aurora_launcher.config import AuthSettings

from conftest import FakeIdentityServices, make_bundle


def _manager(
    store: SessionStore,
    chain: MagicMock | None = None,
    login: MagicMock | None = None,
) -> tuple[SessionManager, MagicMock, MagicMock]:
    chain = chain or MagicMock()
    login = login or MagicMock()
    login.obtain_code.return_value = "auth-code"
    return SessionManager(store, chain, login), chain, login


class TestClassifySession:
    def test_no_bundle(self) -> None:
        assert classify_session(None, time.time()) is SessionState.NO_SESSION

    def test_valid_before_expiry(self, valid_bundle: CredentialBundle) -> None:
        assert classify_session(valid_bundle, time.time()) is SessionState.VALID

    def test_expired_at_and_after_expiry(self, valid_bundle: CredentialBundle) -> None:
        assert classify_session(valid_bundle, valid_bundle.expires_at) is SessionState.EXPIRED
        assert classify_session(valid_bundle, valid_bundle.expires_at + 1) is SessionState.EXPIRED

    @pytest.mark.parametrize(
        ("refresh_token", "expected"),
        [("M.R3_BAY.ok", True), ("", False), ("  ", False), ("null", False)],
    )
    def test_should_refresh(self, refresh_token: str, expected: bool) -> None:
        assert should_refresh(make_bundle(expires_in=-10, refresh_token=refresh_token)) is expected


class TestEnsureSession:
    def test_valid_session_makes_no_calls(self, tmp_path: pathlib.Path, valid_bundle: CredentialBundle) -> None:
        store = SessionStore(tmp_path / "session.yaml")
        store.save(valid_bundle)
        before = (tmp_path / "session.yaml").read_text()
        manager, chain, login = _manager(store)

        assert manager.ensure_session() == valid_bundle
        chain.exchange_code.assert_not_called()
        chain.exchange_refresh_token.assert_not_called()
        login.obtain_code.assert_not_called()
        assert (tmp_path / "session.yaml").read_text() == before

    def test_expired_session_refreshes_once(
        self, tmp_path: pathlib.Path, expired_bundle: CredentialBundle
    ) -> None:
        store = SessionStore(tmp_path / "session.yaml")
        store.save(expired_bundle)
        fresh = make_bundle(username="Steve")
        manager, chain, login = _manager(store)
        chain.exchange_refresh_token.return_value = fresh

        assert manager.ensure_session() == fresh
        chain.exchange_refresh_token.assert_called_once_with(expired_bundle.refresh_token)
        login.obtain_code.assert_not_called()
        assert store.load() == fresh

    @pytest.mark.parametrize("refresh_token", ['"null"', '""'])
    def test_unusable_refresh_token_falls_back_to_login(
        self, tmp_path: pathlib.Path, refresh_token: str
    ) -> None:
        path = tmp_path / "session.yaml"
        path.write_text(
            "auth:\n"
            "  access_token: old\n"
            f"  refresh_token: '{refresh_token}'\n"
            "  username: Steve\n"
            "  uuid: abc-123\n"
            "  xuid: '1'\n"
            "  client_id: 00000000441cc96b\n"
            f"  expires_at: {int(time.time()) - 10}\n"
        )
        fresh = make_bundle()
        manager, chain, login = _manager(SessionStore(path))
        chain.exchange_code.return_value = fresh

        assert manager.ensure_session() == fresh
        login.obtain_code.assert_called_once()
        chain.exchange_code.assert_called_once_with("auth-code")
        chain.exchange_refresh_token.assert_not_called()

    def test_future_expiry_with_blank_token_refreshes(self, tmp_path: pathlib.Path) -> None:
        path = tmp_path / "session.yaml"
        path.write_text(
            "auth:\n"
            "  access_token: ''\n"
            "  refresh_token: M.R3_BAY.stored\n"
            "  username: Steve\n"
            "  uuid: abc-123\n"
            "  xuid: '1'\n"
            "  client_id: 00000000441cc96b\n"
            f"  expires_at: {int(time.time()) + 3600}\n"
        )
        fresh = make_bundle()
        manager, chain, login = _manager(SessionStore(path))
        chain.exchange_refresh_token.return_value = fresh

        assert manager.ensure_session() == fresh
        chain.exchange_refresh_token.assert_called_once_with("M.R3_BAY.stored")
        login.obtain_code.assert_not_called()

    def test_missing_session_runs_interactive_login(self, tmp_path: pathlib.Path) -> None:
        store = SessionStore(tmp_path / "session.yaml")
        fresh = make_bundle()
        manager, chain, login = _manager(store)
        chain.exchange_code.return_value = fresh

        assert manager.ensure_session() == fresh
        login.obtain_code.assert_called_once()
        assert store.load() == fresh

    def test_chain_failure_leaves_store_untouched(
        self, tmp_path: pathlib.Path, expired_bundle: CredentialBundle
    ) -> None:
        store = SessionStore(tmp_path / "session.yaml")
        store.save(expired_bundle)
        before = (tmp_path / "session.yaml").read_text()
        manager, chain, _ = _manager(store)
        chain.exchange_refresh_token.side_effect = AuthError(ChainStage.SECURITY_TOKEN, "HTTP 401", 401)

        with pytest.raises(AuthError):
            manager.ensure_session()
        assert (tmp_path / "session.yaml").read_text() == before

    def test_login_failure_writes_nothing(self, tmp_path: pathlib.Path) -> None:
        store = SessionStore(tmp_path / "session.yaml")
        manager, chain, login = _manager(store)
        login.obtain_code.side_effect = AuthError(ChainStage.AUTHORIZE, "timed out")

        with pytest.raises(AuthError):
            manager.ensure_session()
        chain.exchange_code.assert_not_called()
        assert not store.exists()


class TestRefreshEndToEnd:
    """A stale session file triggers exactly one chain run and one rewrite."""

    def test_stale_file_is_refreshed_through_all_stages(self, tmp_path: pathlib.Path) -> None:
        store = SessionStore(tmp_path / "session.yaml")
        store.save(make_bundle(expires_in=-10, refresh_token="stored-refresh"))
        services = FakeIdentityServices()
        save_calls: list[CredentialBundle] = []
        original_save = store.save

        def counting_save(bundle: CredentialBundle) -> None:
            save_calls.append(bundle)
            original_save(bundle)

        store.save = counting_save  # type: ignore[method-assign]
        manager = SessionManager(store, services.client(), MagicMock())

        bundle = manager.ensure_session()

        assert len(services.requests) == 5
        form = urllib.parse.parse_qs(services.requests[0].content.decode())
        assert form["refresh_token"] == ["stored-refresh"]
        assert len(save_calls) == 1
        assert store.load() == bundle
        assert bundle.username == "Notch"

    def test_failed_stage_stops_chain_and_store(self, tmp_path: pathlib.Path) -> None:
        store = SessionStore(tmp_path / "session.yaml")
        store.save(make_bundle(expires_in=-10))
        before = (tmp_path / "session.yaml").read_text()
        services = FakeIdentityServices({
            "https://xsts.auth.xboxlive.com/xsts/authorize": httpx.Response(401, json={"XErr": 2148916233}),
        })
        manager = SessionManager(store, services.client(), MagicMock())

        with pytest.raises(AuthError) as excinfo:
            manager.ensure_session()

        assert excinfo.value.stage is ChainStage.SECURITY_TOKEN
        assert len(services.requests) == 3
        assert (tmp_path / "session.yaml").read_text() == before


class TestInteractiveLogin:
    def test_browser_redirect_yields_code(self) -> None:
        def fake_browser(url: str) -> bool:
            query = urllib.parse.parse_qs(urllib.parse.urlparse(url).query)
            redirect = query["redirect_uri"][0]
            httpx.get(redirect, params={"code": "M.C-from-browser"}, trust_env=False)
            return True

        settings = AuthSettings(redirect_host="127.0.0.1", redirect_port=0, login_timeout_seconds=5)
        shown: list[str] = []
        login = InteractiveLogin(settings, open_url=fake_browser, notify=shown.append)

        assert login.obtain_code() == "M.C-from-browser"
        assert len(shown) == 1
        assert "XboxLive.signin" in urllib.parse.unquote_plus(shown[0])

    def test_browser_disabled_still_waits_for_redirect(self) -> None:
        opened = MagicMock(return_value=True)
        settings = AuthSettings(
            redirect_host="127.0.0.1", redirect_port=0, login_timeout_seconds=0.1, open_browser=False,
        )
        with pytest.raises(AuthError) as excinfo:
            InteractiveLogin(settings, open_url=opened).obtain_code()
        opened.assert_not_called()
        assert excinfo.value.stage is ChainStage.AUTHORIZE

    def test_configured_authorize_url_is_used(self) -> None:
        settings = AuthSettings(
            redirect_host="127.0.0.1",
            redirect_port=0,
            login_timeout_seconds=0.1,
            open_browser=False,
            authorize_url="https://idp.test/oauth2/authorize",
        )
        shown: list[str] = []
        with pytest.raises(AuthError):
            InteractiveLogin(settings, notify=shown.append).obtain_code()
        assert shown[0].startswith("https://idp.test/oauth2/authorize?")
