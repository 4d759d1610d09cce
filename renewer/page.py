"""Narrow sensing/actuation surface the workflow needs from a page.

Everything the router, handlers and waiter do to the page goes through
``PageActuator``. ``browser.PlaywrightPage`` implements it on a real
Chromium tab; the tests implement it with an in-memory fake.
"""
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable
from urllib.parse import urlparse

Signal = Callable[[dict], Any]


class Subscription:
    """Handle for one active observer. ``cancel`` is idempotent."""

    def __init__(self, sub_id: str, on_cancel: Callable[[], Awaitable[None]]):
        self.sub_id = sub_id
        self._on_cancel = on_cancel
        self.active = True

    async def cancel(self) -> None:
        if not self.active:
            return
        self.active = False
        await self._on_cancel()

    def __repr__(self) -> str:
        state = "active" if self.active else "cancelled"
        return f"<Subscription {self.sub_id} {state}>"


class PageActuator(ABC):
    @abstractmethod
    def url(self) -> str:
        ...

    def path(self) -> str:
        return urlparse(self.url()).path

    @property
    @abstractmethod
    def load_count(self) -> int:
        """Number of completed page loads seen so far."""

    @abstractmethod
    async def exists(self, selector: str) -> bool:
        ...

    @abstractmethod
    async def read_value(self, selector: str) -> str | None:
        """Current ``value`` of the element, or None when it is absent."""

    @abstractmethod
    async def read_attribute(self, selector: str, name: str) -> str | None:
        ...

    @abstractmethod
    async def write_value(self, selector: str, value: str) -> bool:
        """Set the element's value. Returns False when it is absent."""

    @abstractmethod
    async def dispatch_input(self, selector: str) -> bool:
        """Fire a bubbling ``input`` event on the element."""

    @abstractmethod
    async def click(self, selector: str) -> bool:
        ...

    @abstractmethod
    async def navigate(self, url: str) -> None:
        ...

    @abstractmethod
    async def html(self) -> str:
        ...

    @abstractmethod
    async def call_global(self, name: str) -> bool:
        """Call ``window[name]()``. Returns False when it is not a function."""

    @abstractmethod
    async def evaluate(self, expression: str) -> Any:
        ...

    @abstractmethod
    async def observe(
        self, selector: str, on_change: Signal, node_ref: str | None = None
    ) -> Subscription | None:
        """Watch attribute and child changes of an element.

        ``node_ref`` (from an ``observe_added`` signal) picks the node that was
        added; otherwise the first match of ``selector`` is watched. Returns
        None when the element does not exist.
        """

    @abstractmethod
    async def observe_added(self, selector: str, on_added: Signal) -> Subscription:
        """Watch the document for an element matching ``selector`` being added.

        The signal payload carries ``node``, a reference for ``observe``.
        """

    @abstractmethod
    async def observe_submit(
        self, form_selector: str, fields: dict[str, str], on_submit: Signal
    ) -> Subscription | None:
        """Call ``on_submit`` once with the field values when the form submits."""

    @abstractmethod
    async def show_status(self, message: str) -> None:
        ...

    @abstractmethod
    async def remove_status(self) -> None:
        ...
