"""State-entry actions, one per workflow step.

Each handler reads what it needs from the page and stores, acts, reports
progress and returns a ``StepOutcome``. Handlers never call each other; the
next step starts with the next page load. Failures are caught at the handler
boundary (``step_handler``) and end the run with FAILED.
"""

import asyncio
import functools
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable
from urllib.parse import urljoin

from config import Settings
from dom_parser import find_free_server_row, renewal_url, tomorrow_in
from errors import MissingElement, NavigationFailure, StepError
from page import PageActuator
from retrying import Failure, RetryingCaller, min_length
from router import WorkflowStep
from status import StatusReporter
from waiter import ALL_OBSERVERS, POLLING, ConditionWaiter, TimedOut, WaitCondition

MEMBER_ID_KEY = "memberid"
PASSWORD_KEY = "user_password"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StepOutcome(str, Enum):
    NAVIGATING = "navigating"        # a new page load is on its way
    AWAITING_USER = "awaiting_user"  # a human has to act before the next load
    SUBMITTED = "submitted"          # terminal form submission sent
    NO_ACTION = "no_action"
    FAILED = "failed"


@dataclass
class StepContext:
    page: PageActuator
    settings: Settings
    credentials: Any
    caller: RetryingCaller
    status: StatusReporter | None = None
    waiter: ConditionWaiter | None = None
    now: Callable[[], datetime] = _utcnow
    error: str | None = None

    def __post_init__(self):
        if self.status is None:
            self.status = StatusReporter(self.page)
        if self.waiter is None:
            self.waiter = ConditionWaiter(self.page)

    @property
    def selectors(self):
        return self.settings.selectors


def step_handler(failure_message: str):
    """Catch step failures, report them and turn them into FAILED."""
    def decorator(func):
        @functools.wraps(func)
        async def wrapper(ctx: StepContext) -> StepOutcome:
            try:
                return await func(ctx)
            except StepError as e:
                ctx.error = str(e)
                await ctx.status.error(e.user_message or failure_message, e)
            except Exception as e:
                ctx.error = f"{type(e).__name__}: {e}"
                await ctx.status.error(failure_message, e)
            return StepOutcome.FAILED
        return wrapper
    return decorator


async def _first_present(page: PageActuator, selectors: list[str]) -> str | None:
    for selector in selectors:
        if await page.exists(selector):
            return selector
    return None


@step_handler("Automatic login failed. Please log in manually.")
async def handle_login(ctx: StepContext) -> StepOutcome:
    """Log in with stored credentials, or capture the ones a human types."""
    page, sel, status = ctx.page, ctx.selectors, ctx.status
    status.log("Login page detected.")
    await status.update("Processing login...")

    member_id = ctx.credentials.get(MEMBER_ID_KEY)
    password = ctx.credentials.get(PASSWORD_KEY)
    has_error = await page.exists(sel.login_error)

    if member_id and password and not has_error:
        status.log("Saved credentials found, trying automatic login.")
        filled = (await page.write_value(sel.member_id, member_id)
                  and await page.write_value(sel.password, password))
        if not filled:
            raise MissingElement("login form fields not found")
        await status.update("Saved credentials found. Logging in...")
        await asyncio.sleep(ctx.settings.login_submit_delay)
        if not await page.call_global(sel.login_function):
            status.log(f"{sel.login_function} is missing or not a function.")
            await status.update("Warning: login function not found. Please log in manually.")
            return StepOutcome.AWAITING_USER
        return StepOutcome.NAVIGATING

    status.log("No saved credentials or an error is shown; waiting for a manual login.")

    def capture(values: dict) -> None:
        typed_id = values.get(MEMBER_ID_KEY)
        typed_password = values.get(PASSWORD_KEY)
        if not (typed_id and typed_password):
            status.log("Login submitted with empty fields; nothing saved.")
            return
        try:
            ctx.credentials.set(MEMBER_ID_KEY, typed_id)
            ctx.credentials.set(PASSWORD_KEY, typed_password)
        except OSError as e:
            status.log(f"Could not save credentials: {e}")
            return
        status.log("Saved new credentials.")

    fields = {MEMBER_ID_KEY: sel.member_id, PASSWORD_KEY: sel.password}
    subscription = await page.observe_submit(sel.login_form, fields, capture)
    if subscription is None:
        raise MissingElement("login form not found")
    await status.update("Log in manually; your credentials will be saved for next time.")
    return StepOutcome.AWAITING_USER


@step_handler("Error while checking the renewal status. Please reload the page.")
async def handle_dashboard(ctx: StepContext) -> StepOutcome:
    """Go to the renewal page when the free server expires tomorrow."""
    page, sel, status = ctx.page, ctx.selectors, ctx.status
    status.log("VPS dashboard detected.")
    await status.update("Checking renewal status...")

    tomorrow = tomorrow_in(ctx.settings.timezone, ctx.now())
    row = find_free_server_row(
        await page.html(), sel.free_server_marker, sel.expiry_class, sel.detail_link_prefix
    )
    if row is None:
        status.log("Free VPS row not found.")
        await status.update("No free VPS found.")
        return StepOutcome.NO_ACTION

    status.log(f"Expiry on page: {row.expire_date or 'unknown'}")
    status.log(f"Tomorrow: {tomorrow}")

    if row.expire_date != tomorrow:
        status.log("Expiry is not tomorrow, nothing to do.")
        await status.update("This VPS does not need renewal yet.")
        await status.remove(after=ctx.settings.status_clear_delay)
        return StepOutcome.NO_ACTION

    if not row.detail_href:
        raise NavigationFailure("renewal link not found")
    target = renewal_url(urljoin(page.url(), row.detail_href))

    status.log(f"Expiry is tomorrow, going to {target}")
    await status.update("Expiry is tomorrow. Proceeding to renewal...")
    await asyncio.sleep(ctx.settings.navigation_delay)
    await page.navigate(target)
    return StepOutcome.NAVIGATING


@step_handler("Failed to operate the renewal request page.")
async def handle_renewal_request(ctx: StepContext) -> StepOutcome:
    page, sel, status = ctx.page, ctx.selectors, ctx.status
    status.log("Renewal request page detected.")
    await status.update("Preparing the renewal request...")

    await asyncio.sleep(ctx.settings.renewal_settle_delay)
    if not await page.exists(sel.extend_button):
        raise MissingElement("extend button not found")

    status.log("Clicking the extend button.")
    await status.update("Confirming renewal terms...")
    await asyncio.sleep(ctx.settings.renewal_click_delay)
    if not await page.click(sel.extend_button):
        raise MissingElement("extend button could not be clicked")
    return StepOutcome.NAVIGATING


def cloudflare_condition(ctx: StepContext) -> WaitCondition:
    page, blockers = ctx.page, ctx.selectors.cloudflare_blockers

    async def cleared() -> bool:
        return not await page.exists(blockers)

    return WaitCondition(
        predicate=cleared,
        timeout=ctx.settings.cloudflare_timeout,
        strategies=POLLING,
        poll_interval=ctx.settings.cloudflare_poll_interval,
        description="cloudflare interstitial",
    )


def token_condition(ctx: StepContext) -> WaitCondition:
    page, sel = ctx.page, ctx.selectors

    async def has_token() -> bool:
        return bool(await page.read_value(sel.token_input))

    async def widget_response() -> Any:
        return await page.evaluate(sel.token_getter)

    return WaitCondition(
        predicate=has_token,
        timeout=ctx.settings.token_timeout,
        strategies=ALL_OBSERVERS,
        target=sel.token_input,
        external_getter=widget_response,
        poll_interval=ctx.settings.token_poll_interval,
        description="turnstile token",
    )


async def submit_form(ctx: StepContext) -> None:
    await ctx.status.update("All checks complete. Submitting...")
    await asyncio.sleep(ctx.settings.submit_delay)
    for selector in ctx.selectors.submit_buttons:
        if await ctx.page.click(selector):
            ctx.status.log(f"Clicked submit ({selector}).")
            return
    raise MissingElement(
        "submit button not found",
        user_message="Submit button not found. Please submit manually.",
    )


@step_handler("CAPTCHA handling failed. Please reload the page.")
async def handle_challenge_submit(ctx: StepContext) -> StepOutcome:
    """Recognise the CAPTCHA, fill it in, wait for Turnstile, submit."""
    page, sel, settings, status = ctx.page, ctx.selectors, ctx.settings, ctx.status
    status.log("CAPTCHA page detected.")
    await status.update("Recognizing and entering the CAPTCHA...")

    cleared = await ctx.waiter.wait_for(cloudflare_condition(ctx))
    if isinstance(cleared, TimedOut):
        status.log(f"Cloudflare challenge still present after {cleared.timeout:.0f}s, continuing.")

    image_src = None
    for selector in sel.captcha_images:
        image_src = await page.read_attribute(selector, "src")
        if image_src:
            break
    if not image_src:
        raise MissingElement("CAPTCHA image not found")

    status.log("Sending the CAPTCHA image for recognition...")
    await status.update("Recognizing CAPTCHA... please wait")
    result = await ctx.caller.call(
        image_src, min_length(settings.min_code_length), settings.recognition_attempts
    )
    if isinstance(result, Failure):
        raise result.to_error("CAPTCHA recognition")
    code = result.value.strip()
    status.log(f"Recognized: {code} (attempt {result.attempts})")
    await status.update("CAPTCHA recognized. Preparing the form...")

    input_selector = await _first_present(page, sel.captcha_inputs)
    if input_selector is None:
        raise MissingElement("CAPTCHA input not found")
    if not await page.write_value(input_selector, code):
        raise MissingElement("CAPTCHA input disappeared before it could be filled")
    await page.dispatch_input(input_selector)
    status.log("CAPTCHA entered.")
    await status.update("CAPTCHA entered. Waiting for human verification (Turnstile)...")

    token = await ctx.waiter.wait_for(token_condition(ctx))
    if isinstance(token, TimedOut):
        if not settings.submit_on_token_timeout:
            ctx.error = "verification token timed out"
            await status.update("Human verification timed out. Please finish it and submit manually.")
            return StepOutcome.FAILED
        status.log("Turnstile token never appeared, forcing submission.")
        await status.update("Human verification timed out. Forcing submission...")
    else:
        status.log(f"Turnstile token detected via {token.strategy.value}.")

    await submit_form(ctx)
    return StepOutcome.SUBMITTED


HANDLERS = {
    WorkflowStep.LOGIN: handle_login,
    WorkflowStep.DASHBOARD: handle_dashboard,
    WorkflowStep.RENEWAL_REQUEST: handle_renewal_request,
    WorkflowStep.CHALLENGE_SUBMIT: handle_challenge_submit,
}
