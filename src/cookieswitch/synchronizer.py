"""Keeps the declarative engine's dynamic rules in step with the rule list."""

from __future__ import annotations

import logging

from .compiler import RuleCompiler
from .models import CompiledFilterRule
from .stores import FilterEngine

logger = logging.getLogger(__name__)


class RuleSynchronizer:
    """Replaces the engine's dynamic rules with a freshly compiled set.

    Removal and addition go out in one update call, but the engine is not
    guaranteed to apply them atomically; requests sent in between are not
    rewritten. Concurrent reconciles are not serialized: the last one to
    finish determines the installed set.
    """

    def __init__(self, compiler: RuleCompiler, engine: FilterEngine | None) -> None:
        self.compiler = compiler
        self.engine = engine

    @property
    def available(self) -> bool:
        return self.engine is not None

    async def reconcile(self) -> list[CompiledFilterRule]:
        """Install freshly compiled rules in place of every existing one.

        Returns:
            The compiled rules, or an empty list when no engine is present
        """
        if self.engine is None:
            return []

        existing = await self.engine.get_dynamic_rules()
        remove_rule_ids = [rule.id for rule in existing]
        add_rules = await self.compiler.build_add_rules()

        await self.engine.update_dynamic_rules(
            remove_rule_ids=remove_rule_ids,
            add_rules=add_rules,
        )

        installed = await self.engine.get_dynamic_rules()
        logger.info(
            "current dynamic rules: %s",
            [(rule.id, rule.condition.regex_filter) for rule in installed],
        )
        return add_rules
