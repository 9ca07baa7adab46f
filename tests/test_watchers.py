"""Tests for the cookie change and navigation watchers."""

import asyncio
import logging

import pytest

from cookieswitch.compiler import RuleCompiler
from cookieswitch.events import EventHub
from cookieswitch.models import (
    Account,
    AutoSwitchRule,
    Cookie,
    CookieChange,
    RequestDetails,
    ResourceType,
    SwitchSettings,
)
from cookieswitch.stores import (
    MemoryAccountStore,
    MemoryBadge,
    MemoryCookieStore,
    MemoryFilterEngine,
    MemoryRuleStore,
)
from cookieswitch.sync import AccountSync
from cookieswitch.synchronizer import RuleSynchronizer
from cookieswitch.watchers import CookieChangeWatcher, NavigationWatcher

DEBOUNCE_MS = 20
SETTLE_SECONDS = 0.2


class CountingSync:
    """Stand-in for AccountSync that counts runs and can fail on demand."""

    def __init__(self, failures: int = 0) -> None:
        self.calls = 0
        self.failures = failures

    async def run(self) -> str | None:
        self.calls += 1
        if self.failures:
            self.failures -= 1
            msg = "storage unavailable"
            raise RuntimeError(msg)
        return "alice"


def _change(name: str, value: str = "v", removed: bool = False) -> CookieChange:
    return CookieChange(cookie=Cookie(name=name, value=value), removed=removed)


class TestCookieChangeWatcher:
    """Test allow-list filtering and debouncing."""

    @pytest.fixture
    def settings(self) -> SwitchSettings:
        return SwitchSettings(debounce_ms=DEBOUNCE_MS)

    def test_unrelated_cookie_ignored(self, settings: SwitchSettings) -> None:
        """Test that cookies outside the allow-list never arm the timer."""
        sync = CountingSync()
        watcher = CookieChangeWatcher(settings, sync, MemoryBadge())

        async def scenario() -> None:
            await watcher.on_cookie_changed(_change("_octo"))
            assert not watcher.pending
            await asyncio.sleep(SETTLE_SECONDS)

        asyncio.run(scenario())
        assert sync.calls == 0

    def test_identity_removal_updates_badge_only(self, settings: SwitchSettings) -> None:
        """Test that removing the identity cookie shows the syncing badge and never syncs."""
        sync = CountingSync()
        badge = MemoryBadge()
        watcher = CookieChangeWatcher(settings, sync, badge)

        async def scenario() -> None:
            await watcher.on_cookie_changed(_change("dotcom_user", removed=True))
            assert not watcher.pending
            await asyncio.sleep(SETTLE_SECONDS)

        asyncio.run(scenario())
        assert badge.history == ["..."]
        assert sync.calls == 0

    def test_other_auth_cookie_removal_arms_timer(self, settings: SwitchSettings) -> None:
        """Test that removing a non-identity auth cookie schedules a sync."""
        sync = CountingSync()
        watcher = CookieChangeWatcher(settings, sync, MemoryBadge())

        async def scenario() -> None:
            await watcher.on_cookie_changed(_change("_gh_sso", removed=True))
            assert watcher.pending
            await asyncio.sleep(SETTLE_SECONDS)
            await watcher.tasks.drain()

        asyncio.run(scenario())
        assert sync.calls == 1

    def test_burst_collapses_into_one_sync(self, settings: SwitchSettings) -> None:
        """Test that five quick changes produce exactly one sync."""
        sync = CountingSync()
        watcher = CookieChangeWatcher(settings, sync, MemoryBadge())

        async def scenario() -> None:
            for name in ["user_session", "_gh_sso", "logged_in", "dotcom_user", "_gh_sso"]:
                await watcher.on_cookie_changed(_change(name))
            await asyncio.sleep(SETTLE_SECONDS)
            await watcher.tasks.drain()

        asyncio.run(scenario())
        assert sync.calls == 1

    def test_sync_reads_cookies_when_timer_fires(self, settings: SwitchSettings) -> None:
        """Test that the debounced sync captures the jar as of the last change."""
        cookies = MemoryCookieStore()
        accounts = MemoryAccountStore()
        compiler = RuleCompiler(accounts, MemoryRuleStore())
        account_sync = AccountSync(
            settings,
            cookies,
            accounts,
            RuleSynchronizer(compiler, MemoryFilterEngine()),
            MemoryBadge(),
        )
        watcher = CookieChangeWatcher(settings, account_sync, MemoryBadge())

        async def scenario() -> None:
            for step in range(5):
                cookie = Cookie(name="user_session", value=f"s{step}")
                await cookies.set(Cookie(name="dotcom_user", value="alice"))
                await cookies.set(cookie)
                await watcher.on_cookie_changed(CookieChange(cookie=cookie))
            await asyncio.sleep(SETTLE_SECONDS)
            await watcher.tasks.drain()

        asyncio.run(scenario())
        account = asyncio.run(accounts.find("alice"))
        assert account is not None
        values = {c.name: c.value for c in account.cookies}
        assert values["user_session"] == "s4"

    def test_schedule_replaces_pending_timer(self, settings: SwitchSettings) -> None:
        """Test that at most one timer is pending."""
        watcher = CookieChangeWatcher(settings, CountingSync(), MemoryBadge())

        async def scenario() -> None:
            watcher.schedule()
            first = watcher._pending
            watcher.schedule()
            assert first is not None
            assert first.cancelled()
            assert watcher._pending is not first
            watcher.cancel()
            assert not watcher.pending

        asyncio.run(scenario())

    def test_failed_sync_logged_and_watcher_rearmable(
        self,
        settings: SwitchSettings,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        """Test that a failing sync is logged as a warning and later events still sync."""
        sync = CountingSync(failures=1)
        watcher = CookieChangeWatcher(settings, sync, MemoryBadge())

        async def scenario() -> None:
            await watcher.on_cookie_changed(_change("user_session"))
            await asyncio.sleep(SETTLE_SECONDS)
            await watcher.tasks.drain()
            await watcher.on_cookie_changed(_change("user_session"))
            await asyncio.sleep(SETTLE_SECONDS)
            await watcher.tasks.drain()

        with caplog.at_level(logging.WARNING, logger="cookieswitch.watchers"):
            asyncio.run(scenario())

        assert sync.calls == 2
        assert "failed to sync accounts after auth cookie change" in caplog.text


class TestNavigationWatcher:
    """Test auto switching on top-level navigation."""

    @pytest.fixture
    def accounts(self) -> MemoryAccountStore:
        return MemoryAccountStore(
            [
                Account(name="alice", cookies=[Cookie(name="a", value="1")]),
                Account(name="bob", cookies=[Cookie(name="b", value="2")]),
            ],
            cookie_store=MemoryCookieStore(),
        )

    @pytest.fixture
    def watcher(self, accounts: MemoryAccountStore) -> NavigationWatcher:
        rules = MemoryRuleStore(
            [
                AutoSwitchRule(account="bob", url_pattern=r"^https://github\.com/bob/"),
                AutoSwitchRule(account="alice", url_pattern=r"^https://github\.com/"),
                AutoSwitchRule(account="ghost", url_pattern=r"/ghost/"),
            ],
        )
        return NavigationWatcher(SwitchSettings(), rules, accounts)

    def _navigate(self, watcher: NavigationWatcher, details: RequestDetails) -> None:
        async def scenario() -> None:
            hub = EventHub()
            watcher.subscribe(hub)
            await hub.send_request(details)
            await watcher.tasks.drain()

        asyncio.run(scenario())

    def test_first_matching_rule_switches(
        self,
        watcher: NavigationWatcher,
        accounts: MemoryAccountStore,
    ) -> None:
        """Test that the first matching rule decides the account."""
        self._navigate(watcher, RequestDetails(url="https://github.com/bob/repo"))

        assert accounts.active == "bob"
        cookie = asyncio.run(accounts.cookie_store.get("b"))
        assert cookie is not None

    def test_only_main_frame_observed(
        self,
        watcher: NavigationWatcher,
        accounts: MemoryAccountStore,
    ) -> None:
        """Test that sub-resource requests are not navigation."""
        self._navigate(
            watcher,
            RequestDetails(url="https://github.com/bob/repo", type=ResourceType.XMLHTTPREQUEST),
        )
        assert accounts.active is None

    def test_other_origin_ignored(
        self,
        watcher: NavigationWatcher,
        accounts: MemoryAccountStore,
    ) -> None:
        """Test that navigation outside the origin is not observed."""
        self._navigate(watcher, RequestDetails(url="https://example.com/bob/"))
        assert accounts.active is None

    def test_unknown_account_logged_not_raised(
        self,
        watcher: NavigationWatcher,
        accounts: MemoryAccountStore,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        """Test that a rule for a missing account does not break navigation."""
        with caplog.at_level(logging.WARNING, logger="cookieswitch.watchers"):
            result = asyncio.run(watcher._switch_for("https://example.com/ghost/"))

        assert result is None
        assert accounts.active is None
        assert "auto switch for https://example.com/ghost/ failed" in caplog.text
