"""Service wiring: builds every component once and subscribes it to events."""

from __future__ import annotations

import logging

from .commands import CommandDispatcher
from .compiler import RuleCompiler
from .events import EventHub
from .interceptor import RequestInterceptor
from .models import SwitchSettings
from .stores import AccountStore, BadgeDisplay, CookieStore, FilterEngine, RuleStore
from .sync import AccountSync, AvatarFetcher
from .synchronizer import RuleSynchronizer
from .watchers import CookieChangeWatcher, NavigationWatcher

logger = logging.getLogger(__name__)


class SwitchService:
    """Multi-account cookie switching for one origin.

    With a filter engine, matching requests are rewritten by installed
    rules. Without one, the request interceptor rewrites them per request.
    """

    def __init__(
        self,
        settings: SwitchSettings,
        events: EventHub,
        cookies: CookieStore,
        accounts: AccountStore,
        rules: RuleStore,
        badge: BadgeDisplay,
        engine: FilterEngine | None = None,
        avatars: AvatarFetcher | None = None,
    ) -> None:
        self.settings = settings
        self.events = events
        self.engine = engine

        self.compiler = RuleCompiler(accounts, rules)
        self.synchronizer = RuleSynchronizer(self.compiler, engine)
        self.account_sync = AccountSync(
            settings,
            cookies,
            accounts,
            self.synchronizer,
            badge,
            avatars,
        )
        self.cookie_watcher = CookieChangeWatcher(settings, self.account_sync, badge)
        self.navigation_watcher = NavigationWatcher(settings, rules, accounts)
        self.dispatcher = CommandDispatcher(accounts, rules, cookies, self.account_sync)
        self.interceptor: RequestInterceptor | None = None
        self.started = False

    async def start(self) -> None:
        """Run the initial sync and register every listener."""
        if self.started:
            return

        try:
            await self.account_sync.run()
        except Exception:
            logger.warning("initial account sync failed", exc_info=True)

        self.navigation_watcher.subscribe(self.events)
        self.cookie_watcher.subscribe(self.events)
        self.events.on_message.add_listener(self.dispatcher.handle)

        if self.engine is None:
            logger.info("no declarative filter engine, intercepting requests")
            self.interceptor = RequestInterceptor(
                self.settings,
                self.compiler.rules,
                self.compiler,
            )
            self.interceptor.subscribe(self.events)
        self.started = True

    async def stop(self) -> None:
        """Drop the pending debounce timer and wait for background work."""
        self.cookie_watcher.cancel()
        await self.cookie_watcher.tasks.drain()
        await self.navigation_watcher.tasks.drain()
