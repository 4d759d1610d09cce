import itertools
import os
from typing import Any
from urllib.parse import urlparse
from playwright.async_api import async_playwright, Page, Browser, Error as PlaywrightError

from page import PageActuator, Signal, Subscription

SIGNAL_BINDING = "__renewSignal"
STATUS_ELEMENT_ID = "vps-renewal-progress"

# Installed before page scripts run on every load: registries of our observers
# (by id) and of added nodes awaiting an observer, plus the overlay style.
_INIT_SCRIPT = """
window.__renewObservers = {};
window.__renewNodes = {};
document.addEventListener('DOMContentLoaded', () => {
    const style = document.createElement('style');
    style.textContent = `
        #vps-renewal-progress {
            position: fixed; top: 10px; right: 10px; z-index: 10000;
            background: #333; color: #fff; padding: 10px 12px; border-radius: 6px;
            font-size: 12px; line-height: 1.4; box-shadow: 0 6px 18px rgba(0,0,0,0.25);
            max-width: 280px; word-break: break-all;
        }`;
    document.head.appendChild(style);
});
"""

_OBSERVE_JS = """([id, selector, nodeRef]) => {
    let el = null;
    if (nodeRef) {
        el = window.__renewNodes[nodeRef] ?? null;
        delete window.__renewNodes[nodeRef];
    }
    el = el ?? document.querySelector(selector);
    if (!el) return false;
    const obs = new MutationObserver(() => window.__renewSignal(id, {}));
    obs.observe(el, {attributes: true, childList: true, subtree: true, characterData: true});
    window.__renewObservers[id] = () => obs.disconnect();
    return true;
}"""

_OBSERVE_ADDED_JS = """([id, selector]) => {
    let seq = 0;
    const obs = new MutationObserver((records) => {
        for (const record of records) {
            for (const node of record.addedNodes) {
                if (node.nodeType !== 1) continue;
                const match = node.matches?.(selector) ? node : node.querySelector?.(selector);
                if (match) {
                    const nodeRef = `${id}-${++seq}`;
                    window.__renewNodes[nodeRef] = match;
                    window.__renewSignal(id, {node: nodeRef});
                    return;
                }
            }
        }
    });
    obs.observe(document.documentElement, {childList: true, subtree: true});
    window.__renewObservers[id] = () => obs.disconnect();
    return true;
}"""

_OBSERVE_SUBMIT_JS = """([id, formSelector, fields]) => {
    const form = document.querySelector(formSelector);
    if (!form) return false;
    const onSubmit = () => {
        const values = {};
        for (const [key, sel] of Object.entries(fields)) {
            const el = document.querySelector(sel);
            values[key] = el ? el.value : null;
        }
        window.__renewSignal(id, values);
    };
    form.addEventListener('submit', onSubmit, {once: true});
    window.__renewObservers[id] = () => form.removeEventListener('submit', onSubmit);
    return true;
}"""

_DISCONNECT_JS = """(id) => {
    const stop = window.__renewObservers?.[id];
    if (stop) { stop(); delete window.__renewObservers[id]; }
}"""

_SHOW_STATUS_JS = """([id, message]) => {
    let el = document.getElementById(id);
    if (!el) {
        el = document.createElement('div');
        el.id = id;
        document.body.appendChild(el);
    }
    el.textContent = message;
}"""


def _proxy_settings() -> dict | None:
    """Playwright proxy config from HTTPS_PROXY / HTTP_PROXY, if any."""
    proxy_url = (os.environ.get("HTTPS_PROXY") or os.environ.get("HTTP_PROXY")
                 or os.environ.get("https_proxy") or os.environ.get("http_proxy"))
    if not proxy_url:
        return None
    parsed = urlparse(proxy_url)
    if not parsed.hostname:
        return None
    proxy = {"server": f"{parsed.scheme or 'http'}://{parsed.hostname}:{parsed.port or 80}"}
    if parsed.username:
        proxy["username"] = parsed.username
        proxy["password"] = parsed.password or ""
    return proxy


class PlaywrightPage(PageActuator):
    """PageActuator over one Playwright tab."""

    def __init__(self, page: Page):
        self.page = page
        self._loads = 0
        self._ids = itertools.count(1)
        self._callbacks: dict[str, Signal] = {}

    async def install(self) -> None:
        """Register the signal binding and init script. Call before the first goto."""
        await self.page.expose_function(SIGNAL_BINDING, self._on_signal)
        await self.page.add_init_script(_INIT_SCRIPT)
        self.page.on("load", self._on_load)

    def _on_load(self, _page=None) -> None:
        self._loads += 1
        # Observers die with the old document
        self._callbacks.clear()

    def _on_signal(self, sub_id: str, payload: dict | None = None) -> None:
        callback = self._callbacks.get(sub_id)
        if callback is not None:
            callback(payload or {})

    @property
    def load_count(self) -> int:
        return self._loads

    def url(self) -> str:
        return self.page.url

    async def exists(self, selector: str) -> bool:
        return await self.page.query_selector(selector) is not None

    async def read_value(self, selector: str) -> str | None:
        return await self.page.evaluate(
            "(s) => { const el = document.querySelector(s); return el ? (el.value ?? '') : null; }",
            selector,
        )

    async def read_attribute(self, selector: str, name: str) -> str | None:
        return await self.page.evaluate(
            "([s, n]) => document.querySelector(s)?.getAttribute(n) ?? null",
            [selector, name],
        )

    async def write_value(self, selector: str, value: str) -> bool:
        return await self.page.evaluate(
            "([s, v]) => { const el = document.querySelector(s); if (!el) return false; el.value = v; return true; }",
            [selector, value],
        )

    async def dispatch_input(self, selector: str) -> bool:
        return await self.page.evaluate(
            """(s) => {
                const el = document.querySelector(s);
                if (!el) return false;
                el.dispatchEvent(new Event('input', {bubbles: true}));
                return true;
            }""",
            selector,
        )

    async def click(self, selector: str) -> bool:
        """Click element by selector. Returns success."""
        if not await self.exists(selector):
            return False
        try:
            await self.page.click(selector, timeout=2000)
            return True
        except PlaywrightError as e:
            print(f"    [browser] click {selector!r} failed: {e}", flush=True)
            return False

    async def navigate(self, url: str) -> None:
        await self.page.goto(url)

    async def html(self) -> str:
        return await self.page.content()

    async def call_global(self, name: str) -> bool:
        try:
            return await self.page.evaluate(
                "(n) => { if (typeof window[n] !== 'function') return false; window[n](); return true; }",
                name,
            )
        except PlaywrightError as e:
            # The call itself navigated away before evaluate could return
            if "context was destroyed" in str(e):
                return True
            raise

    async def evaluate(self, expression: str) -> Any:
        return await self.page.evaluate(expression)

    def _register(self, callback: Signal) -> str:
        sub_id = f"sub-{next(self._ids)}"
        self._callbacks[sub_id] = callback
        return sub_id

    def _subscription(self, sub_id: str) -> Subscription:
        async def stop() -> None:
            self._callbacks.pop(sub_id, None)
            try:
                await self.page.evaluate(_DISCONNECT_JS, sub_id)
            except PlaywrightError:
                pass  # document already gone
        return Subscription(sub_id, stop)

    async def _start(self, script: str, args: list, callback: Signal) -> Subscription | None:
        sub_id = self._register(callback)
        try:
            started = await self.page.evaluate(script, [sub_id, *args])
        except BaseException:
            self._callbacks.pop(sub_id, None)
            raise
        if not started:
            self._callbacks.pop(sub_id, None)
            return None
        return self._subscription(sub_id)

    async def observe(
        self, selector: str, on_change: Signal, node_ref: str | None = None
    ) -> Subscription | None:
        return await self._start(_OBSERVE_JS, [selector, node_ref], on_change)

    async def observe_added(self, selector: str, on_added: Signal) -> Subscription:
        return await self._start(_OBSERVE_ADDED_JS, [selector], on_added)

    async def observe_submit(
        self, form_selector: str, fields: dict[str, str], on_submit: Signal
    ) -> Subscription | None:
        return await self._start(_OBSERVE_SUBMIT_JS, [form_selector, fields], on_submit)

    async def show_status(self, message: str) -> None:
        await self.page.evaluate(_SHOW_STATUS_JS, [STATUS_ELEMENT_ID, message])

    async def remove_status(self) -> None:
        await self.page.evaluate("(id) => document.getElementById(id)?.remove()", STATUS_ELEMENT_ID)


class BrowserController:
    def __init__(self):
        self.browser: Browser | None = None
        self.context = None
        self.page: PlaywrightPage | None = None
        self.playwright = None

    async def start(self, url: str, headless: bool = False) -> PlaywrightPage:
        """Launch browser and navigate to URL."""
        self.playwright = await async_playwright().start()

        launch_kwargs = {"headless": headless}
        context_kwargs = {"viewport": {"width": 1280, "height": 800}, "locale": "ja-JP"}

        proxy = _proxy_settings()
        if proxy:
            launch_kwargs["proxy"] = proxy

        self.browser = await self.playwright.chromium.launch(**launch_kwargs)
        self.context = await self.browser.new_context(**context_kwargs)
        self.page = PlaywrightPage(await self.context.new_page())
        await self.page.install()
        await self.page.navigate(url)
        return self.page

    async def stop(self) -> None:
        """Close browser."""
        if self.browser:
            await self.browser.close()
        if self.playwright:
            await self.playwright.stop()
        self.browser = None
        self.playwright = None

    async def screenshot(self, path: str) -> None:
        """Save a screenshot of the current page (used on failures)."""
        if self.page is not None:
            await self.page.page.screenshot(path=path, type="png")
