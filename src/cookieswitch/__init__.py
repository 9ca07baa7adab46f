"""cookieswitch: per-URL account switching by cookie rewriting."""

__version__ = "0.1.0"
__author__ = "cookieswitch Contributors"
__description__ = "Per-URL account switching by cookie rewriting"

from .compiler import RuleCompiler
from .models import Account, AutoSwitchRule, CompiledFilterRule, SwitchSettings
from .service import SwitchService
from .synchronizer import RuleSynchronizer

__all__ = [
    "Account",
    "AutoSwitchRule",
    "CompiledFilterRule",
    "RuleCompiler",
    "RuleSynchronizer",
    "SwitchService",
    "SwitchSettings",
]
