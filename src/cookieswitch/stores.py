"""Collaborator interfaces and their in-memory and registry-backed implementations.

The core only talks to these protocols. The in-memory classes are enough to
run the whole service in-process; the registry classes persist rules and
account snapshots to a profile directory.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Sequence
from typing import TYPE_CHECKING, Protocol

from .exceptions import AccountNotFoundError
from .models import (
    Account,
    AutoSwitchRule,
    CompiledFilterRule,
    Cookie,
    CookieChange,
    HttpHeader,
    RequestDetails,
    ResourceType,
)

if TYPE_CHECKING:
    from .events import EventHub
    from .registry import ProfileRegistry

logger = logging.getLogger(__name__)


class CookieStore(Protocol):
    """Raw access to the browser cookie jar of the target origin."""

    async def get(self, name: str) -> Cookie | None: ...

    async def get_all(self) -> list[Cookie]: ...

    async def set(self, cookie: Cookie) -> None: ...

    async def clear(self) -> None: ...


class AccountStore(Protocol):
    """Persistence of accounts and their cookie snapshots."""

    async def upsert(self, name: str, cookies: Sequence[Cookie]) -> Account: ...

    async def get_all(self) -> list[Account]: ...

    async def get_all_names(self) -> list[str]: ...

    async def find(self, name: str) -> Account | None: ...

    async def remove(self, name: str) -> None: ...

    async def switch_to(self, name: str) -> None: ...

    async def save_avatar(self, name: str, avatar_url: str) -> None: ...


class RuleStore(Protocol):
    """Ordered auto-switch rules."""

    async def get_all(self) -> list[AutoSwitchRule]: ...


class BadgeDisplay(Protocol):
    async def set_badge_text(self, text: str) -> None: ...


class FilterEngine(Protocol):
    """Declarative request filtering engine holding dynamic rules."""

    async def get_dynamic_rules(self) -> list[CompiledFilterRule]: ...

    async def update_dynamic_rules(
        self,
        remove_rule_ids: Sequence[int],
        add_rules: Sequence[CompiledFilterRule],
    ) -> None: ...


class MemoryCookieStore:
    """Cookie jar kept in a dict; changes are announced on the event hub."""

    def __init__(
        self,
        cookies: Iterable[Cookie] = (),
        events: EventHub | None = None,
    ) -> None:
        self._cookies: dict[str, Cookie] = {c.name: c for c in cookies}
        self._events = events

    async def _notify(self, cookie: Cookie, removed: bool, cause: str) -> None:
        if self._events is not None:
            await self._events.on_cookie_changed.emit(
                CookieChange(cookie=cookie, removed=removed, cause=cause),
            )

    async def get(self, name: str) -> Cookie | None:
        return self._cookies.get(name)

    async def get_all(self) -> list[Cookie]:
        return [c.model_copy() for c in self._cookies.values()]

    async def set(self, cookie: Cookie) -> None:
        self._cookies[cookie.name] = cookie
        await self._notify(cookie, removed=False, cause="explicit")

    async def remove(self, name: str) -> None:
        cookie = self._cookies.pop(name, None)
        if cookie is not None:
            await self._notify(cookie, removed=True, cause="explicit")

    async def clear(self) -> None:
        for name in list(self._cookies):
            await self.remove(name)


class MemoryAccountStore:
    """Accounts kept in insertion order.

    Switching writes the stored snapshot back into the cookie store, replacing
    whatever the jar held before.
    """

    def __init__(
        self,
        accounts: Iterable[Account] = (),
        cookie_store: CookieStore | None = None,
    ) -> None:
        self._accounts: dict[str, Account] = {a.name: a for a in accounts}
        self.cookie_store = cookie_store
        self.active: str | None = None

    def _changed(self) -> None:
        """Hook for subclasses that persist the account table."""

    async def upsert(self, name: str, cookies: Sequence[Cookie]) -> Account:
        existing = self._accounts.get(name)
        account = Account(
            name=name,
            cookies=[c.model_copy() for c in cookies],
            avatar_url=existing.avatar_url if existing else None,
        )
        self._accounts[name] = account
        self._changed()
        return account

    async def get_all(self) -> list[Account]:
        return list(self._accounts.values())

    async def get_all_names(self) -> list[str]:
        return list(self._accounts)

    async def find(self, name: str) -> Account | None:
        return self._accounts.get(name)

    async def remove(self, name: str) -> None:
        if self._accounts.pop(name, None) is not None:
            self._changed()

    async def switch_to(self, name: str) -> None:
        account = self._accounts.get(name)
        if account is None:
            msg = f"Account not found: {name}"
            raise AccountNotFoundError(msg, details={"account": name})

        self.active = name
        if self.cookie_store is None:
            return

        await self.cookie_store.clear()
        for cookie in account.cookies:
            await self.cookie_store.set(cookie.model_copy())
        logger.info("switched to account %s", name)

    async def save_avatar(self, name: str, avatar_url: str) -> None:
        account = self._accounts.get(name)
        if account is None:
            return
        self._accounts[name] = account.model_copy(update={"avatar_url": avatar_url})
        self._changed()


class MemoryRuleStore:
    def __init__(self, rules: Iterable[AutoSwitchRule] = ()) -> None:
        self.rules: list[AutoSwitchRule] = list(rules)

    async def get_all(self) -> list[AutoSwitchRule]:
        return list(self.rules)


class MemoryBadge:
    """Records badge texts; the last one is what is displayed."""

    def __init__(self) -> None:
        self.history: list[str] = []

    @property
    def text(self) -> str | None:
        return self.history[-1] if self.history else None

    async def set_badge_text(self, text: str) -> None:
        self.history.append(text)


class MemoryFilterEngine:
    """Simulated declarative engine.

    Installed rules are evaluated in id order and the first whose condition
    matches wins, the same way the browser engine treats equal priorities.
    """

    def __init__(self) -> None:
        self._rules: dict[int, CompiledFilterRule] = {}
        self.update_calls = 0

    async def get_dynamic_rules(self) -> list[CompiledFilterRule]:
        return [self._rules[rule_id] for rule_id in sorted(self._rules)]

    async def update_dynamic_rules(
        self,
        remove_rule_ids: Sequence[int],
        add_rules: Sequence[CompiledFilterRule],
    ) -> None:
        new_ids = [rule.id for rule in add_rules]
        if len(set(new_ids)) != len(new_ids):
            msg = f"Duplicate rule ids in update: {new_ids}"
            raise ValueError(msg)

        remaining = {k: v for k, v in self._rules.items() if k not in set(remove_rule_ids)}
        clashes = sorted(set(remaining) & set(new_ids))
        if clashes:
            msg = f"Rule ids already installed: {clashes}"
            raise ValueError(msg)

        remaining.update({rule.id: rule for rule in add_rules})
        self._rules = remaining
        self.update_calls += 1

    def match(
        self,
        url: str,
        resource_type: ResourceType = ResourceType.MAIN_FRAME,
    ) -> CompiledFilterRule | None:
        for rule_id in sorted(self._rules):
            rule = self._rules[rule_id]
            if resource_type not in rule.condition.resource_types:
                continue
            if re.search(rule.condition.regex_filter, url):
                return rule
        return None

    def apply(self, details: RequestDetails) -> CompiledFilterRule | None:
        """Rewrite the request's Cookie header as the engine would."""
        rule = self.match(details.url, details.type)
        if rule is None:
            return None

        headers = details.request_headers
        if headers is None:
            headers = details.request_headers = []
        for modification in rule.action.request_headers:
            wanted = modification.header.lower()
            kept = [h for h in headers if h.name.lower() != wanted]
            if modification.operation == "set":
                kept.append(HttpHeader(modification.header, modification.value))
            headers[:] = kept
        return rule


class RegistryRuleStore:
    """Reads auto-switch rules from the profile registry on every call."""

    def __init__(self, registry: ProfileRegistry, validate: bool = True) -> None:
        self.registry = registry
        self.validate = validate

    async def get_all(self) -> list[AutoSwitchRule]:
        return self.registry.load_rules(validate=self.validate)


class RegistryAccountStore(MemoryAccountStore):
    """Account table loaded from and written back to the profile registry."""

    def __init__(
        self,
        registry: ProfileRegistry,
        cookie_store: CookieStore | None = None,
        validate: bool = True,
    ) -> None:
        super().__init__(registry.load_accounts(validate=validate), cookie_store)
        self.registry = registry

    def _changed(self) -> None:
        self.registry.save_accounts(list(self._accounts.values()))
