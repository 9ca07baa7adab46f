"""Account sync: capture the signed-in account's cookies and refresh rules."""

from __future__ import annotations

import logging

import httpx

from .models import SwitchSettings
from .stores import AccountStore, BadgeDisplay, CookieStore
from .synchronizer import RuleSynchronizer

logger = logging.getLogger(__name__)

AVATAR_TIMEOUT_SECONDS = 10.0


class AvatarFetcher:
    """Resolves an account's avatar image URL."""

    def __init__(
        self,
        settings: SwitchSettings,
        client: httpx.AsyncClient | None = None,
        timeout: float = AVATAR_TIMEOUT_SECONDS,
    ) -> None:
        self.settings = settings
        self.client = client
        self.timeout = timeout

    async def fetch(self, account: str) -> str | None:
        """Return the final avatar URL, or None on any non-200 outcome."""
        url = self.settings.avatar_url(account)
        try:
            if self.client is not None:
                response = await self.client.get(url, follow_redirects=True)
            else:
                async with httpx.AsyncClient(
                    timeout=self.timeout,
                    follow_redirects=True,
                ) as client:
                    response = await client.get(url)
        except httpx.HTTPError as e:
            logger.info("avatar fetch for %s failed: %s", account, e)
            return None

        if response.status_code != 200:
            return None
        return str(response.url)


class AccountSync:
    """Snapshots the current cookie jar under the signed-in account."""

    def __init__(
        self,
        settings: SwitchSettings,
        cookies: CookieStore,
        accounts: AccountStore,
        synchronizer: RuleSynchronizer,
        badge: BadgeDisplay,
        avatars: AvatarFetcher | None = None,
    ) -> None:
        self.settings = settings
        self.cookies = cookies
        self.accounts = accounts
        self.synchronizer = synchronizer
        self.badge = badge
        self.avatars = avatars

    async def run(self) -> str | None:
        """Sync the signed-in account.

        Returns:
            Name of the synced account, or None when nobody is signed in
        """
        identity = await self.cookies.get(self.settings.identity_cookie)
        session = await self.cookies.get(self.settings.session_cookie)
        if identity is None or session is None:
            return None

        account = identity.value
        if not account:
            return None

        await self.accounts.upsert(account, await self.cookies.get_all())
        logger.info("synced accounts: %s", await self.accounts.get_all_names())

        await self.synchronizer.reconcile()

        if self.avatars is not None:
            avatar_url = await self.avatars.fetch(account)
            if avatar_url:
                await self.accounts.save_avatar(account, avatar_url)

        await self.badge.set_badge_text(account[: self.settings.badge_label_length])
        return account

    async def remove_account(self, name: str) -> None:
        """Forget an account and drop its filter rule."""
        await self.accounts.remove(name)
        await self.synchronizer.reconcile()
