"""Tests for the account sync routine and avatar fetching."""

import asyncio

import httpx
import pytest

from cookieswitch.compiler import RuleCompiler
from cookieswitch.models import Account, AutoSwitchRule, Cookie, SwitchSettings
from cookieswitch.stores import (
    MemoryAccountStore,
    MemoryBadge,
    MemoryCookieStore,
    MemoryFilterEngine,
    MemoryRuleStore,
)
from cookieswitch.sync import AccountSync, AvatarFetcher
from cookieswitch.synchronizer import RuleSynchronizer

AVATAR_CDN = "https://avatars.example.com/u/42?s=100"


def _avatar_transport(status: int = 200) -> httpx.MockTransport:
    """Avatar endpoint that redirects to a CDN, like the real service."""

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "github.com":
            return httpx.Response(302, headers={"Location": AVATAR_CDN})
        return httpx.Response(status, content=b"\x89PNG")

    return httpx.MockTransport(handler)


def _signed_in(login: str = "alice") -> MemoryCookieStore:
    return MemoryCookieStore(
        [
            Cookie(name="dotcom_user", value=login),
            Cookie(name="user_session", value="sess"),
            Cookie(name="_gh_sso", value="sso"),
        ],
    )


class TestAccountSync:
    """Test capturing the signed-in account."""

    @pytest.fixture
    def settings(self) -> SwitchSettings:
        return SwitchSettings()

    def _build(
        self,
        settings: SwitchSettings,
        cookies: MemoryCookieStore,
        avatars: AvatarFetcher | None = None,
    ) -> tuple[AccountSync, MemoryAccountStore, MemoryFilterEngine, MemoryBadge]:
        accounts = MemoryAccountStore()
        rules = MemoryRuleStore([AutoSwitchRule(account="alice", url_pattern="/acme/")])
        engine = MemoryFilterEngine()
        badge = MemoryBadge()
        synchronizer = RuleSynchronizer(RuleCompiler(accounts, rules), engine)
        account_sync = AccountSync(settings, cookies, accounts, synchronizer, badge, avatars)
        return account_sync, accounts, engine, badge

    def test_missing_identity_is_noop(self, settings: SwitchSettings) -> None:
        """Test that nothing happens without the identity cookie."""
        cookies = MemoryCookieStore([Cookie(name="user_session", value="sess")])
        account_sync, accounts, engine, badge = self._build(settings, cookies)

        assert asyncio.run(account_sync.run()) is None
        assert asyncio.run(accounts.get_all_names()) == []
        assert engine.update_calls == 0
        assert badge.history == []

    def test_missing_session_is_noop(self, settings: SwitchSettings) -> None:
        """Test that nothing happens without the session cookie."""
        cookies = MemoryCookieStore([Cookie(name="dotcom_user", value="alice")])
        account_sync, accounts, _, _ = self._build(settings, cookies)

        assert asyncio.run(account_sync.run()) is None
        assert asyncio.run(accounts.get_all_names()) == []

    def test_empty_identity_value_is_noop(self, settings: SwitchSettings) -> None:
        """Test that a blank login name is treated as signed out."""
        cookies = MemoryCookieStore(
            [Cookie(name="dotcom_user", value=""), Cookie(name="user_session", value="s")],
        )
        account_sync, accounts, _, _ = self._build(settings, cookies)

        assert asyncio.run(account_sync.run()) is None
        assert asyncio.run(accounts.get_all_names()) == []

    def test_sync_captures_snapshot_and_installs_rules(self, settings: SwitchSettings) -> None:
        """Test the full sync: upsert, reconcile, badge."""
        account_sync, accounts, engine, badge = self._build(settings, _signed_in())

        assert asyncio.run(account_sync.run()) == "alice"

        account = asyncio.run(accounts.find("alice"))
        assert [c.name for c in account.cookies] == ["dotcom_user", "user_session", "_gh_sso"]
        installed = asyncio.run(engine.get_dynamic_rules())
        assert installed[0].cookie_header_value == (
            "dotcom_user=alice; user_session=sess; _gh_sso=sso; __account__=alice"
        )
        assert badge.history == ["al"]

    def test_managed_user_login_synced(self, settings: SwitchSettings) -> None:
        """Test that a handle_shortcode style login is captured like any other."""
        cookies = MemoryCookieStore(
            [
                Cookie(name="dotcom_user", value="alice_acme"),
                Cookie(name="user_session", value="s"),
            ],
        )
        account_sync, accounts, _, badge = self._build(settings, cookies)

        assert asyncio.run(account_sync.run()) == "alice_acme"
        assert asyncio.run(accounts.get_all_names()) == ["alice_acme"]
        assert badge.history == ["al"]

    def test_snapshot_replaced_not_merged(self, settings: SwitchSettings) -> None:
        """Test that a re-sync drops cookies that are no longer in the jar."""
        cookies = _signed_in()
        account_sync, accounts, _, _ = self._build(settings, cookies)
        asyncio.run(account_sync.run())

        asyncio.run(cookies.remove("_gh_sso"))
        asyncio.run(account_sync.run())

        account = asyncio.run(accounts.find("alice"))
        assert [c.name for c in account.cookies] == ["dotcom_user", "user_session"]

    def test_avatar_saved_from_final_url(self, settings: SwitchSettings) -> None:
        """Test that the redirected avatar URL is stored."""

        async def scenario() -> Account | None:
            async with httpx.AsyncClient(transport=_avatar_transport()) as client:
                account_sync, accounts, _, _ = self._build(
                    settings,
                    _signed_in(),
                    AvatarFetcher(settings, client=client),
                )
                await account_sync.run()
                return await accounts.find("alice")

        account = asyncio.run(scenario())
        assert account.avatar_url == AVATAR_CDN

    def test_avatar_failure_ignored(self, settings: SwitchSettings) -> None:
        """Test that a non-200 avatar response does not fail the sync."""

        async def scenario() -> tuple[str | None, Account | None, MemoryBadge]:
            async with httpx.AsyncClient(transport=_avatar_transport(404)) as client:
                account_sync, accounts, _, badge = self._build(
                    settings,
                    _signed_in(),
                    AvatarFetcher(settings, client=client),
                )
                synced = await account_sync.run()
                return synced, await accounts.find("alice"), badge

        synced, account, badge = asyncio.run(scenario())
        assert synced == "alice"
        assert account.avatar_url is None
        assert badge.history == ["al"]

    def test_remove_account_reconciles(self, settings: SwitchSettings) -> None:
        """Test that removing an account drops its installed rule."""
        account_sync, accounts, engine, _ = self._build(settings, _signed_in())
        asyncio.run(account_sync.run())

        asyncio.run(account_sync.remove_account("alice"))

        assert asyncio.run(accounts.get_all_names()) == []
        assert asyncio.run(engine.get_dynamic_rules()) == []


class TestAvatarFetcher:
    """Test avatar lookups."""

    def test_transport_error_returns_none(self) -> None:
        """Test that network failures are swallowed."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("unreachable", request=request)

        async def scenario() -> str | None:
            transport = httpx.MockTransport(handler)
            async with httpx.AsyncClient(transport=transport) as client:
                return await AvatarFetcher(SwitchSettings(), client=client).fetch("alice")

        assert asyncio.run(scenario()) is None

    def test_url_uses_settings_template(self) -> None:
        """Test that the request goes to the configured avatar URL."""
        seen: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(str(request.url))
            return httpx.Response(200)

        async def scenario() -> str | None:
            settings = SwitchSettings(origin="https://git.example.org")
            transport = httpx.MockTransport(handler)
            async with httpx.AsyncClient(transport=transport) as client:
                return await AvatarFetcher(settings, client=client).fetch("bob")

        assert asyncio.run(scenario()) == "https://git.example.org/bob.png?size=100"
        assert seen == ["https://git.example.org/bob.png?size=100"]
