"""Core data models for cookieswitch."""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

ACCOUNT_MARKER = "__account__"


def validate_account_name(name: str) -> str:
    """Validate an account name is usable as a key.

    Any login the service issues is accepted; the marker alternative escapes it.
    """
    if not name or name != name.strip():
        msg = "Account name must be non-empty without surrounding whitespace"
        raise ValueError(msg)
    return name


class ResourceType(str, Enum):
    """Request types the filtering engine distinguishes."""

    MAIN_FRAME = "main_frame"
    SUB_FRAME = "sub_frame"
    CSP_REPORT = "csp_report"
    WEBSOCKET = "websocket"
    XMLHTTPREQUEST = "xmlhttprequest"


RESOURCE_TYPES: tuple[ResourceType, ...] = (
    ResourceType.MAIN_FRAME,
    ResourceType.SUB_FRAME,
    ResourceType.CSP_REPORT,
    ResourceType.WEBSOCKET,
    ResourceType.XMLHTTPREQUEST,
)


class Cookie(BaseModel):
    """A single cookie as reported by the cookie store."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    name: str = Field(..., description="Cookie name")
    value: str = Field(default="", description="Cookie value")
    domain: str = Field(default="", description="Cookie domain")
    path: str = Field(default="/", description="Cookie path")
    secure: bool = Field(default=False)
    http_only: bool = Field(default=False, alias="httpOnly")
    expiration_date: float | None = Field(default=None, alias="expirationDate")


class Account(BaseModel):
    """A logical account and the cookie jar captured for it."""

    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(..., description="Account (login) name")
    cookies: list[Cookie] = Field(
        default_factory=list,
        description="Cookie snapshot taken at the last sync",
    )
    avatar_url: str | None = Field(default=None, alias="avatarUrl")

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Validate account name charset."""
        return validate_account_name(v)


class AutoSwitchRule(BaseModel):
    """Maps a URL pattern to the account whose cookies should be sent."""

    model_config = ConfigDict(populate_by_name=True)

    account: str = Field(..., description="Target account name")
    url_pattern: str = Field(
        ...,
        alias="urlPattern",
        description="Regular expression source matched against request URLs",
    )

    @field_validator("account")
    @classmethod
    def validate_account(cls, v: str) -> str:
        """Validate account name charset."""
        return validate_account_name(v)

    @field_validator("url_pattern")
    @classmethod
    def validate_url_pattern(cls, v: str) -> str:
        """Validate that the pattern is a usable regular expression."""
        if not v:
            msg = "URL pattern must not be empty"
            raise ValueError(msg)
        try:
            re.compile(v)
        except re.error as e:
            msg = f"URL pattern is not a valid regular expression: {e}"
            raise ValueError(msg) from e
        return v


class RequestHeaderModification(BaseModel):
    """One header operation performed by a compiled filter rule."""

    header: str = "Cookie"
    operation: Literal["set", "append", "remove"] = "set"
    value: str


class RuleAction(BaseModel):
    """Action part of a compiled filter rule."""

    model_config = ConfigDict(populate_by_name=True)

    type: Literal["modifyHeaders"] = "modifyHeaders"
    request_headers: list[RequestHeaderModification] = Field(
        ...,
        alias="requestHeaders",
    )


class RuleCondition(BaseModel):
    """Condition part of a compiled filter rule."""

    model_config = ConfigDict(populate_by_name=True)

    regex_filter: str = Field(..., alias="regexFilter")
    resource_types: list[ResourceType] = Field(
        default_factory=lambda: list(RESOURCE_TYPES),
        alias="resourceTypes",
    )


class CompiledFilterRule(BaseModel):
    """A header-rewrite rule in the declarative engine's schema."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: int = Field(..., ge=1, description="Rule id, original rule index + 1")
    priority: int = Field(default=1)
    action: RuleAction
    condition: RuleCondition

    @property
    def cookie_header_value(self) -> str:
        """Value the rule sets on the Cookie header."""
        return self.action.request_headers[0].value

    def to_platform(self) -> dict[str, Any]:
        """Dump in the engine's camelCase wire format."""
        return self.model_dump(mode="json", by_alias=True)


class CommandResponse(BaseModel):
    """Structured result of a command message."""

    success: bool
    data: Any = None
    error: str | None = None


class SwitchSettings(BaseModel):
    """Target origin, auth cookie names and timing knobs."""

    origin: str = Field(
        default="https://github.com",
        description="Origin whose requests are rewritten",
    )
    identity_cookie: str = Field(
        default="dotcom_user",
        description="Cookie holding the signed-in login name",
    )
    session_cookie: str = Field(default="user_session")
    sso_cookie: str = Field(default="_gh_sso")
    login_flag_cookie: str = Field(default="logged_in")
    debounce_ms: int = Field(
        default=300,
        ge=0,
        description="Quiet period before an auth cookie change triggers a sync",
    )
    avatar_url_template: str = Field(
        default="{origin}/{account}.png?size=100",
    )
    badge_label_length: int = Field(default=2, ge=1)
    syncing_badge_text: str = Field(default="...")

    @field_validator("origin")
    @classmethod
    def validate_origin(cls, v: str) -> str:
        """Validate origin is an http(s) URL without a trailing slash."""
        if not re.match(r"^https?://[^/\s]+$", v):
            msg = "Origin must look like https://host (no path, no trailing slash)"
            raise ValueError(msg)
        return v

    @property
    def url_filter(self) -> str:
        """Match pattern covering every URL of the origin."""
        return f"{self.origin}/*"

    @property
    def auth_cookie_names(self) -> frozenset[str]:
        """Cookie names whose changes warrant an account re-sync."""
        return frozenset(
            {
                self.identity_cookie,
                self.session_cookie,
                self.sso_cookie,
                self.login_flag_cookie,
            },
        )

    @property
    def debounce_seconds(self) -> float:
        return self.debounce_ms / 1000

    def avatar_url(self, account: str) -> str:
        return self.avatar_url_template.format(origin=self.origin, account=account)


class ProfileSettings(BaseModel):
    """Contents of settings.yaml, with versioning."""

    version: str = Field(..., description="Semantic version of the settings file")
    settings: SwitchSettings = Field(default_factory=SwitchSettings)

    @field_validator("version")
    @classmethod
    def validate_semver(cls, v: str) -> str:
        """Validate version follows semantic versioning."""
        semver_pattern = r"^\d+\.\d+\.\d+(?:-[a-zA-Z0-9\-]+)?(?:\+[a-zA-Z0-9\-]+)?$"
        if not re.match(semver_pattern, v):
            msg = "Version must follow semantic versioning (e.g., 1.0.0)"
            raise ValueError(msg)
        return v


# Runtime event records handed over by the request lifecycle. Plain dataclasses
# so hooks can rewrite header values in place.


@dataclass
class HttpHeader:
    """A request header as seen by the pre-send hook."""

    name: str
    value: str | None = None


@dataclass
class RequestDetails:
    """An outgoing request observed by a lifecycle hook."""

    url: str
    type: ResourceType = ResourceType.MAIN_FRAME
    method: str = "GET"
    request_headers: list[HttpHeader] | None = None
    request_id: str | None = None

    def __post_init__(self) -> None:
        """Ensure type is a ResourceType enum."""
        if isinstance(self.type, str):
            self.type = ResourceType(self.type)


@dataclass
class BlockingResponse:
    """Result of the blocking pre-send hook."""

    request_headers: list[HttpHeader] | None = None


@dataclass
class CookieChange:
    """A cookie-store change notification."""

    cookie: Cookie
    removed: bool = False
    cause: str = "explicit"
