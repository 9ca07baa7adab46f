"""Command messages exchanged with the popup and their dispatcher."""

from __future__ import annotations

import logging
from typing import Annotated, Any, Literal, Union, assert_never

from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from .exceptions import CommandError
from .models import CommandResponse
from .stores import AccountStore, CookieStore, RuleStore
from .sync import AccountSync

logger = logging.getLogger(__name__)


class GetAccounts(BaseModel):
    type: Literal["getAccounts"] = "getAccounts"


class SwitchAccount(BaseModel):
    type: Literal["switchAccount"] = "switchAccount"
    account: str


class RemoveAccount(BaseModel):
    type: Literal["removeAccount"] = "removeAccount"
    account: str


class ClearCookies(BaseModel):
    type: Literal["clearCookies"] = "clearCookies"


class GetAutoSwitchRules(BaseModel):
    type: Literal["getAutoSwitchRules"] = "getAutoSwitchRules"


COMMAND_MODELS = (GetAccounts, SwitchAccount, RemoveAccount, ClearCookies, GetAutoSwitchRules)

Command = Annotated[Union[COMMAND_MODELS], Field(discriminator="type")]

COMMAND_TYPES = frozenset(model.model_fields["type"].default for model in COMMAND_MODELS)

_command_adapter: TypeAdapter[Command] = TypeAdapter(Command)


def parse_command(message: dict[str, Any] | BaseModel) -> Command | None:
    """Parse a raw message into a command.

    Returns:
        The command, or None when the message type is not a known command

    Raises:
        CommandError: If a known command carries invalid fields
    """
    if isinstance(message, BaseModel):
        message = message.model_dump()
    if not isinstance(message, dict) or message.get("type") not in COMMAND_TYPES:
        return None

    try:
        return _command_adapter.validate_python(message)
    except ValidationError as e:
        msg = f"Invalid {message['type']} message: {e}"
        raise CommandError(msg, details={"type": message["type"]}) from e


class CommandDispatcher:
    """Executes commands against the stores.

    Failures are reported in the response, never raised to the sender.
    """

    def __init__(
        self,
        accounts: AccountStore,
        rules: RuleStore,
        cookies: CookieStore,
        account_sync: AccountSync,
    ) -> None:
        self.accounts = accounts
        self.rules = rules
        self.cookies = cookies
        self.account_sync = account_sync

    async def execute(self, command: Command) -> Any:
        if isinstance(command, GetAccounts):
            return await self.accounts.get_all_names()
        if isinstance(command, SwitchAccount):
            return await self.accounts.switch_to(command.account)
        if isinstance(command, RemoveAccount):
            return await self.account_sync.remove_account(command.account)
        if isinstance(command, ClearCookies):
            return await self.cookies.clear()
        if isinstance(command, GetAutoSwitchRules):
            rules = await self.rules.get_all()
            return [rule.model_dump(by_alias=True) for rule in rules]
        assert_never(command)

    async def handle(self, message: dict[str, Any] | BaseModel) -> CommandResponse | None:
        """Handle one message.

        Returns:
            The response, or None for messages that are not commands
        """
        try:
            command = parse_command(message)
            if command is None:
                return None
            data = await self.execute(command)
        except Exception as e:
            logger.info("command %r failed: %s", message, e)
            return CommandResponse(success=False, error=str(e))
        return CommandResponse(success=True, data=data)
