"""Drive the renewal workflow across page loads.

Every page load is one run: a fresh RunState, Router and StepContext. The
runner dispatches the step for the current path, waits for the handler, then
(unless the outcome is terminal) waits for the next page load. A submitted
challenge is terminal.
"""
import time
from datetime import datetime

from browser import BrowserController
from config import Settings
from credentials import CredentialStore
from handlers import HANDLERS, StepContext, StepOutcome
from metrics import MetricsTracker
from page import PageActuator
from recognizer import build_recognizer
from retrying import RetryingCaller
from router import Router, RunState, classify
from waiter import POLLING, TimedOut, WaitCondition

# The submit ends the workflow; the reply page is left for the user to read
TERMINAL = {StepOutcome.SUBMITTED, StepOutcome.NO_ACTION, StepOutcome.FAILED}


class RenewalRunner:
    def __init__(self, settings: Settings, recognizer=None, credentials=None):
        self.settings = settings
        self.browser = BrowserController()
        self.credentials = credentials or CredentialStore(settings.credentials_path)
        self.recognizer = recognizer or build_recognizer(settings)
        self.caller = RetryingCaller(self.recognizer.recognize, name="recognizer")
        self.metrics = MetricsTracker()
        self.handlers = dict(HANDLERS)
        self.save_failure_screenshots = True

    async def run(self) -> dict:
        """Open the login page and follow the workflow to its end."""
        page = await self.browser.start(self.settings.login_url, headless=self.settings.headless)

        try:
            await self.drive(page)
        finally:
            await self.browser.stop()
            close = getattr(self.recognizer, "close", None)
            if close is not None:
                await close()
            self.metrics.print_summary()

        return self.metrics.get_summary()

    def new_context(self, page: PageActuator) -> StepContext:
        return StepContext(
            page=page,
            settings=self.settings,
            credentials=self.credentials,
            caller=self.caller,
        )

    async def drive(self, page: PageActuator) -> None:
        for run_num in range(1, self.settings.max_page_runs + 1):
            seen_loads = page.load_count
            path = page.path()
            step = classify(path)
            ctx = self.new_context(page)
            router = Router(self.handlers, ctx, RunState())

            task = router.dispatch(step)
            if task is None:
                print(f"\n--- Page {run_num}: {path} is not part of the workflow, stopping ---", flush=True)
                return

            print(f"\n--- Page {run_num}: {step.value} ({path}) ---", flush=True)
            self.metrics.start_run(run_num, step.value, path)
            run_start = time.time()
            outcome = await task
            self.metrics.end_run(run_num, outcome.value, ctx.error)
            print(f"  [{time.time() - run_start:.1f}s] {step.value} -> {outcome.value}", flush=True)

            if outcome in TERMINAL:
                if outcome is StepOutcome.FAILED:
                    await self._save_failure_screenshot(run_num)
                return

            timeout = (self.settings.manual_login_timeout if outcome is StepOutcome.AWAITING_USER
                       else self.settings.navigation_timeout)
            arrived = await ctx.waiter.wait_for(self._next_load(page, seen_loads, timeout))
            if isinstance(arrived, TimedOut):
                print(f"  No new page within {timeout:.0f}s, stopping.", flush=True)
                return

        print(f"\nStopped after {self.settings.max_page_runs} pages.", flush=True)

    def _next_load(self, page: PageActuator, seen_loads: int, timeout: float) -> WaitCondition:
        async def loaded() -> bool:
            return page.load_count > seen_loads

        return WaitCondition(
            predicate=loaded,
            timeout=timeout,
            strategies=POLLING,
            poll_interval=self.settings.navigation_poll_interval,
            description="next page load",
        )

    async def _save_failure_screenshot(self, run_num: int) -> None:
        if not self.save_failure_screenshots or self.browser.page is None:
            return
        path = f"failure_{datetime.now().strftime('%Y%m%d_%H%M%S')}_{run_num}.png"
        await self.browser.screenshot(path)
        print(f"  Screenshot saved to: {path}", flush=True)
