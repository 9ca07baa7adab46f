"""Rule compiler turning auto-switch rules into declarative filter rules."""

from __future__ import annotations

import re
from collections.abc import Sequence

from .exceptions import CompilationError
from .models import (
    ACCOUNT_MARKER,
    RESOURCE_TYPES,
    AutoSwitchRule,
    CompiledFilterRule,
    RequestHeaderModification,
    RuleAction,
    RuleCondition,
)
from .stores import AccountStore, RuleStore

RULE_PRIORITY = 1


def combined_pattern(rule: AutoSwitchRule) -> str:
    """Regex matching either the rule's URL pattern or its account marker.

    The marker alternative keeps a request that already carries the injected
    cookie bound to the same account after a redirect leaves the pattern. The
    account name is escaped so it only ever matches literally.
    """
    return f"{rule.url_pattern}|{ACCOUNT_MARKER}={re.escape(rule.account)}"


def compile_pattern(rule: AutoSwitchRule) -> re.Pattern[str]:
    """Compile the combined pattern of a rule.

    Raises:
        CompilationError: If the combined pattern is not a valid regex
    """
    pattern = combined_pattern(rule)
    try:
        return re.compile(pattern)
    except re.error as e:
        msg = f"Invalid pattern for account {rule.account}: {e}"
        raise CompilationError(msg, details={"pattern": pattern}) from e


class RuleCompiler:
    """Compiles the ordered rule list and account cookie jars into filter rules."""

    def __init__(self, accounts: AccountStore, rules: RuleStore) -> None:
        """Initialize compiler with its stores.

        Args:
            accounts: Store holding account cookie snapshots
            rules: Store holding the ordered auto-switch rules
        """
        self.accounts = accounts
        self.rules = rules

    async def build_cookie_value(self, account_name: str) -> str | None:
        """Build the Cookie header value for an account.

        Returns:
            ``name=value`` pairs joined with ``"; "`` followed by the account
            marker, or None if the account is unknown or has no cookies
        """
        account = await self.accounts.find(account_name)
        cookies = account.cookies if account else []
        if not cookies:
            return None

        pairs = [f"{cookie.name}={cookie.value}" for cookie in cookies]
        pairs.append(f"{ACCOUNT_MARKER}={account_name}")
        return "; ".join(pairs)

    async def build_add_rules(
        self,
        rules: Sequence[AutoSwitchRule] | None = None,
    ) -> list[CompiledFilterRule]:
        """Compile auto-switch rules into filter rules.

        Rule ids are the position in the full rule list plus one, so they stay
        stable when rules for cookie-less accounts are skipped.

        Args:
            rules: Rules to compile, defaults to the rule store contents

        Returns:
            Filter rules in rule-list order
        """
        if rules is None:
            rules = await self.rules.get_all()

        compiled: list[CompiledFilterRule] = []
        for index, rule in enumerate(rules):
            cookie_value = await self.build_cookie_value(rule.account)
            if not cookie_value:
                continue

            compiled.append(
                CompiledFilterRule(
                    id=index + 1,
                    priority=RULE_PRIORITY,
                    action=RuleAction(
                        request_headers=[
                            RequestHeaderModification(
                                header="Cookie",
                                operation="set",
                                value=cookie_value,
                            ),
                        ],
                    ),
                    condition=RuleCondition(
                        regex_filter=combined_pattern(rule),
                        resource_types=list(RESOURCE_TYPES),
                    ),
                ),
            )
        return compiled
