"""Per-request cookie rewriting for platforms without a declarative engine."""

from __future__ import annotations

import logging

from .compiler import RuleCompiler, compile_pattern
from .events import RequestEvents, RequestFilter
from .models import (
    RESOURCE_TYPES,
    AutoSwitchRule,
    BlockingResponse,
    RequestDetails,
    SwitchSettings,
)
from .stores import RuleStore

logger = logging.getLogger(__name__)


class RequestInterceptor:
    """Blocking pre-send hook that swaps the Cookie header of matching requests.

    Rules are tried in declared order and the first match wins; there is no
    priority in this path.
    """

    def __init__(
        self,
        settings: SwitchSettings,
        rules: RuleStore,
        compiler: RuleCompiler,
    ) -> None:
        self.settings = settings
        self.rules = rules
        self.compiler = compiler

    def subscribe(self, events: RequestEvents) -> None:
        events.on_before_send_headers.add_listener(
            self.on_before_send_headers,
            RequestFilter.build(urls=[self.settings.url_filter], types=RESOURCE_TYPES),
        )

    async def find_rule(self, url: str) -> AutoSwitchRule | None:
        """Return the first rule whose combined pattern matches the URL."""
        for rule in await self.rules.get_all():
            if compile_pattern(rule).search(url):
                return rule
        return None

    async def on_before_send_headers(self, details: RequestDetails) -> BlockingResponse:
        headers = details.request_headers
        if not headers:
            return BlockingResponse(request_headers=headers)

        rule = await self.find_rule(details.url)
        if rule is None:
            return BlockingResponse(request_headers=headers)

        cookie_value = await self.compiler.build_cookie_value(rule.account)
        if cookie_value:
            for header in headers:
                if header.name.lower() == "cookie":
                    header.value = cookie_value
        logger.info("found an auto switch rule for %s: %s", details.url, rule.account)
        return BlockingResponse(request_headers=headers)
