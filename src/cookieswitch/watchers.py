"""Cookie change and navigation watchers."""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Coroutine
from typing import Any

from .events import RequestEvents, RequestFilter
from .models import CookieChange, RequestDetails, ResourceType, SwitchSettings
from .stores import AccountStore, BadgeDisplay, RuleStore
from .sync import AccountSync

logger = logging.getLogger(__name__)


class BackgroundTasks:
    """Holds references to fire-and-forget tasks until they finish."""

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task[Any]] = set()

    def spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task[Any]:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self) -> None:
        """Wait for every task spawned so far, including ones they spawn."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


class CookieChangeWatcher:
    """Re-syncs accounts after authentication cookies change.

    Single sign-on flows can set auxiliary cookies (such as the SSO marker)
    without touching the identity cookie, so every allow-listed cookie counts.
    Bursts are debounced: at most one timer is pending, and each qualifying
    change replaces it. The sync reads the cookie jar when the timer fires.
    """

    def __init__(
        self,
        settings: SwitchSettings,
        account_sync: AccountSync,
        badge: BadgeDisplay,
    ) -> None:
        self.settings = settings
        self.account_sync = account_sync
        self.badge = badge
        self._pending: asyncio.TimerHandle | None = None
        self.tasks = BackgroundTasks()

    @property
    def pending(self) -> bool:
        return self._pending is not None

    def subscribe(self, events: RequestEvents) -> None:
        events.on_cookie_changed.add_listener(self.on_cookie_changed)

    async def on_cookie_changed(self, change: CookieChange) -> None:
        name = change.cookie.name
        if name not in self.settings.auth_cookie_names:
            return

        if change.removed and name == self.settings.identity_cookie:
            # No login name, nothing to sync until it is set again.
            logger.info("%s cookie removed", name)
            await self.badge.set_badge_text(self.settings.syncing_badge_text)
            return

        if name == self.settings.identity_cookie:
            logger.info("new %s cookie: %s", name, change.cookie.value)
        else:
            logger.info("auth-related cookie changed: %s (removed=%s)", name, change.removed)
        self.schedule()

    def schedule(self) -> None:
        """Arm the debounce timer, replacing any pending one."""
        self.cancel()
        loop = asyncio.get_running_loop()
        self._pending = loop.call_later(self.settings.debounce_seconds, self._fire)

    def cancel(self) -> None:
        if self._pending is not None:
            self._pending.cancel()
            self._pending = None

    def _fire(self) -> None:
        self._pending = None
        self.tasks.spawn(self._sync())

    async def _sync(self) -> None:
        try:
            await self.account_sync.run()
        except Exception:
            logger.warning(
                "failed to sync accounts after auth cookie change",
                exc_info=True,
            )


class NavigationWatcher:
    """Switches account when a top-level navigation matches an auto-switch rule.

    Never blocks or alters the navigation; the switch runs in the background.
    """

    def __init__(
        self,
        settings: SwitchSettings,
        rules: RuleStore,
        accounts: AccountStore,
    ) -> None:
        self.settings = settings
        self.rules = rules
        self.accounts = accounts
        self.tasks = BackgroundTasks()

    def subscribe(self, events: RequestEvents) -> None:
        events.on_before_request.add_listener(
            self.on_before_request,
            RequestFilter.build(
                urls=[self.settings.url_filter],
                types=[ResourceType.MAIN_FRAME],
            ),
        )

    def on_before_request(self, details: RequestDetails) -> None:
        self.tasks.spawn(self._switch_for(details.url))

    async def _switch_for(self, url: str) -> str | None:
        try:
            for rule in await self.rules.get_all():
                if re.search(rule.url_pattern, url):
                    logger.info("found an auto switch rule for %s: %s", url, rule.account)
                    await self.accounts.switch_to(rule.account)
                    return rule.account
        except Exception:
            logger.warning("auto switch for %s failed", url, exc_info=True)
        return None
