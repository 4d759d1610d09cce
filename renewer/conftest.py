import itertools
from typing import Any, Callable
from urllib.parse import urlparse

import pytest

from config import load_settings
from credentials import CredentialStore
from handlers import StepContext
from page import PageActuator, Signal, Subscription
from retrying import RetryingCaller

BASE = "https://secure.xserver.ne.jp"
LOGIN_URL = f"{BASE}/xapanel/login/xvps/"
DASHBOARD_URL = f"{BASE}/xapanel/xvps/index"
EXTEND_URL = f"{BASE}/xapanel/xvps/server/freevps/extend/index?id_vps=12345"
CONF_URL = f"{BASE}/xapanel/xvps/server/freevps/extend/conf"

CAPTCHA_SRC = "data:image/png;base64,iVBORw0KGgo="


class FakePage(PageActuator):
    """In-memory page: elements are a dict of selector -> attributes.

    ``site`` maps a path to the elements/html that a navigation to it loads.
    """

    def __init__(
        self,
        url: str = LOGIN_URL,
        elements: dict[str, dict] | None = None,
        html: str = "",
        globals: dict[str, Callable] | None = None,
        expressions: dict[str, Any] | None = None,
        on_click: dict[str, Callable] | None = None,
        site: dict[str, dict] | None = None,
    ):
        self._url = url
        self.elements = {k: dict(v) for k, v in (elements or {}).items()}
        self.page_html = html
        self.globals = dict(globals or {})
        self.expressions = dict(expressions or {})
        self.on_click = dict(on_click or {})
        self.site = dict(site or {})
        self.actions: list[tuple] = []
        self.navigations: list[str] = []
        self.status_messages: list[str] = []
        self.status_visible = False
        self.evaluations = 0
        self.observe_calls: list[tuple[str, str]] = []
        self.observed_nodes: list[str] = []
        self._loads = 0
        self._subs: dict[str, tuple[str, str, Any]] = {}
        self._ids = itertools.count(1)

    # --- PageActuator ---

    def url(self) -> str:
        return self._url

    @property
    def load_count(self) -> int:
        return self._loads

    async def exists(self, selector: str) -> bool:
        return selector in self.elements

    async def read_value(self, selector: str) -> str | None:
        if selector not in self.elements:
            return None
        return self.elements[selector].get("value", "")

    async def read_attribute(self, selector: str, name: str) -> str | None:
        return self.elements.get(selector, {}).get(name)

    async def write_value(self, selector: str, value: str) -> bool:
        if selector not in self.elements:
            return False
        self.actions.append(("write", selector, value))
        self.set_value(selector, value)
        return True

    async def dispatch_input(self, selector: str) -> bool:
        self.actions.append(("input", selector))
        return selector in self.elements

    async def click(self, selector: str) -> bool:
        if selector not in self.elements:
            return False
        self.actions.append(("click", selector))
        hook = self.on_click.get(selector)
        if hook is not None:
            hook(self)
        return True

    async def navigate(self, url: str) -> None:
        self.navigations.append(url)
        self.load(url)

    async def html(self) -> str:
        return self.page_html

    async def call_global(self, name: str) -> bool:
        fn = self.globals.get(name)
        if not callable(fn):
            return False
        self.actions.append(("call", name))
        fn(self)
        return True

    async def evaluate(self, expression: str) -> Any:
        self.evaluations += 1
        value = self.expressions.get(expression)
        return value(self) if callable(value) else value

    async def observe(self, selector: str, on_change: Signal, node_ref=None) -> Subscription | None:
        self.observe_calls.append(("observe", selector))
        if node_ref is not None:
            self.observed_nodes.append(node_ref)
        if selector not in self.elements:
            return None
        return self._register("observe", selector, on_change)

    async def observe_added(self, selector: str, on_added: Signal) -> Subscription:
        self.observe_calls.append(("added", selector))
        return self._register("added", selector, on_added)

    async def observe_submit(self, form_selector, fields, on_submit) -> Subscription | None:
        self.observe_calls.append(("submit", form_selector))
        if form_selector not in self.elements:
            return None
        return self._register("submit", form_selector, (fields, on_submit))

    async def show_status(self, message: str) -> None:
        self.status_messages.append(message)
        self.status_visible = True

    async def remove_status(self) -> None:
        self.status_visible = False

    # --- test helpers ---

    @property
    def active_subscriptions(self) -> int:
        return len(self._subs)

    def _register(self, kind: str, selector: str, payload) -> Subscription:
        sub_id = f"fake-{next(self._ids)}"
        self._subs[sub_id] = (kind, selector, payload)

        async def stop() -> None:
            self._subs.pop(sub_id, None)

        return Subscription(sub_id, stop)

    def _fire(self, kind: str, selector: str, payload: dict | None = None) -> None:
        for sub_kind, sub_selector, callback in list(self._subs.values()):
            if sub_kind == kind and sub_selector == selector:
                callback(dict(payload or {}))

    def set_value(self, selector: str, value: str) -> None:
        self.elements.setdefault(selector, {})["value"] = value
        self._fire("observe", selector)

    def add_element(self, selector: str, **attrs) -> str:
        """Add (or replace) an element; returns the node reference it reports."""
        node_ref = f"node-{next(self._ids)}"
        self.elements[selector] = attrs
        self._fire("added", selector, {"node": node_ref})
        return node_ref

    def remove_element(self, selector: str) -> None:
        self.elements.pop(selector, None)

    def submit(self, form_selector: str) -> None:
        for sub_id, (kind, selector, payload) in list(self._subs.items()):
            if kind == "submit" and selector == form_selector:
                fields, callback = payload
                del self._subs[sub_id]
                callback({k: self.elements.get(s, {}).get("value") for k, s in fields.items()})

    def load(self, url: str, elements: dict | None = None, html: str | None = None) -> None:
        """Simulate a completed page load (a new document)."""
        page = self.site.get(urlparse(url).path, {})
        self._url = url
        self.elements = {k: dict(v) for k, v in (elements or page.get("elements", {})).items()}
        self.page_html = html if html is not None else page.get("html", "")
        self._subs.clear()
        self.status_visible = False
        self._loads += 1


def dashboard_html(expire_date: str, detail_id: str = "12345", with_link: bool = True) -> str:
    link = (f'<a href="/xapanel/xvps/server/detail?id={detail_id}">detail</a>' if with_link else "")
    return f"""
    <table>
      <tr><td>paid-server</td><td><span class="contract__term">2030-01-01</span></td>
          <td><a href="/xapanel/xvps/server/detail?id=999">detail</a></td></tr>
      <tr><td><i class="freeServerIco"></i> free-server</td>
          <td><span class="contract__term"> {expire_date} </span></td>
          <td>{link}</td></tr>
    </table>
    """


@pytest.fixture
def fast_settings(tmp_path):
    """Settings with every fixed delay removed and short waits."""
    return load_settings(
        credentials_path=tmp_path / "credentials.json",
        login_submit_delay=0,
        navigation_delay=0,
        renewal_settle_delay=0,
        renewal_click_delay=0,
        submit_delay=0,
        status_clear_delay=0,
        cloudflare_timeout=0.3,
        cloudflare_poll_interval=0.02,
        token_timeout=0.3,
        token_poll_interval=0.02,
        navigation_timeout=0.5,
        manual_login_timeout=0.5,
        navigation_poll_interval=0.01,
    )


@pytest.fixture
def credentials(fast_settings):
    return CredentialStore(fast_settings.credentials_path)


@pytest.fixture
def make_context(fast_settings, credentials):
    """Build a StepContext around a page and a fake recognizer function."""
    def factory(page: FakePage, recognize=None, **settings_overrides) -> StepContext:
        settings = fast_settings.model_copy(update=settings_overrides)

        async def default_recognize(image_data: str) -> str:
            return "AB12"

        caller = RetryingCaller(recognize or default_recognize, name="recognizer")
        return StepContext(page=page, settings=settings, credentials=credentials, caller=caller)

    return factory
