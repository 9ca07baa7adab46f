"""In-process request lifecycle and cookie change channels."""

from __future__ import annotations

import inspect
import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from fnmatch import fnmatchcase
from typing import Any, Generic, Protocol, TypeVar

from .models import CookieChange, RequestDetails, ResourceType

logger = logging.getLogger(__name__)

EventT = TypeVar("EventT")
Listener = Callable[[Any], Any]


@dataclass(frozen=True)
class RequestFilter:
    """Restricts a request listener to URL match patterns and resource types.

    Match patterns use shell-style wildcards, e.g. ``https://github.com/*``.
    Empty ``urls`` or ``types`` match everything.
    """

    urls: tuple[str, ...] = ()
    types: tuple[ResourceType, ...] = ()

    @classmethod
    def build(
        cls,
        urls: Iterable[str] = (),
        types: Iterable[ResourceType] = (),
    ) -> RequestFilter:
        return cls(urls=tuple(urls), types=tuple(ResourceType(t) for t in types))

    def matches(self, details: RequestDetails) -> bool:
        if self.types and details.type not in self.types:
            return False
        if self.urls and not any(fnmatchcase(details.url, p) for p in self.urls):
            return False
        return True


@dataclass
class _Registration(Generic[EventT]):
    callback: Listener
    request_filter: RequestFilter | None = None


@dataclass
class EventChannel(Generic[EventT]):
    """A list of listeners notified in registration order."""

    name: str
    _registrations: list[_Registration[EventT]] = field(default_factory=list)

    def add_listener(
        self,
        callback: Listener,
        request_filter: RequestFilter | None = None,
    ) -> None:
        self._registrations.append(_Registration(callback, request_filter))

    async def emit(self, event: EventT) -> list[Any]:
        """Deliver an event to every matching listener.

        Coroutine results are awaited before the next listener runs, which is
        what makes a pre-send hook blocking.
        """
        results = []
        for registration in list(self._registrations):
            request_filter = registration.request_filter
            if request_filter is not None and isinstance(event, RequestDetails):
                if not request_filter.matches(event):
                    continue
            result = registration.callback(event)
            if inspect.isawaitable(result):
                result = await result
            results.append(result)
        logger.debug("%s delivered to %d listener(s)", self.name, len(results))
        return results


class RequestEvents(Protocol):
    """Lifecycle hooks a request source exposes."""

    on_before_request: EventChannel[RequestDetails]
    on_before_send_headers: EventChannel[RequestDetails]
    on_cookie_changed: EventChannel[CookieChange]
    on_message: EventChannel[Any]


class EventHub:
    """Default in-process implementation of the lifecycle hooks."""

    def __init__(self) -> None:
        self.on_before_request: EventChannel[RequestDetails] = EventChannel(
            "onBeforeRequest",
        )
        self.on_before_send_headers: EventChannel[RequestDetails] = EventChannel(
            "onBeforeSendHeaders",
        )
        self.on_cookie_changed: EventChannel[CookieChange] = EventChannel(
            "onCookieChanged",
        )
        self.on_message: EventChannel[Any] = EventChannel("onMessage")

    async def send_request(self, details: RequestDetails) -> RequestDetails:
        """Run a request through both request hooks, as a browser would."""
        await self.on_before_request.emit(details)
        await self.on_before_send_headers.emit(details)
        return details

    async def send_message(self, message: Any) -> Any:
        """Deliver a command message and return the first listener's reply."""
        results = await self.on_message.emit(message)
        return results[0] if results else None
