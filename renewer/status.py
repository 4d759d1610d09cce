"""User-facing progress: console lines plus the on-page overlay."""
import asyncio
import traceback

from errors import StepError
from page import PageActuator

LOG_PREFIX = "[vps-renew]"


class StatusReporter:
    def __init__(self, page: PageActuator, prefix: str = LOG_PREFIX):
        self.page = page
        self.prefix = prefix
        self.history: list[str] = []
        self.visible = False

    def log(self, message: str) -> None:
        """Console only; nothing shown on the page."""
        print(f"{self.prefix} {message}", flush=True)

    async def update(self, message: str) -> None:
        """Show ``message`` in the overlay, creating it on first use."""
        self.log(message)
        self.history.append(message)
        await self.page.show_status(message)
        self.visible = True

    async def error(self, message: str, exc: BaseException | None = None) -> None:
        if exc is not None:
            self.log(f"ERROR: {type(exc).__name__}: {exc}")
            if not isinstance(exc, StepError):
                traceback.print_exception(type(exc), exc, exc.__traceback__)
        await self.update(message)

    async def remove(self, after: float = 0.0) -> None:
        if after > 0:
            await asyncio.sleep(after)
        if self.visible:
            await self.page.remove_status()
            self.visible = False
