"""Map the current page path to a workflow step and dispatch it once."""
import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable


class WorkflowStep(str, Enum):
    LOGIN = "login"
    DASHBOARD = "dashboard"
    RENEWAL_REQUEST = "renewal_request"
    CHALLENGE_SUBMIT = "challenge_submit"
    UNKNOWN = "unknown"


# (path prefix, step). The longest matching prefix wins.
ROUTES: list[tuple[str, WorkflowStep]] = [
    ("/xapanel/login/xvps", WorkflowStep.LOGIN),
    ("/xapanel/xvps/index", WorkflowStep.DASHBOARD),
    ("/xapanel/xvps/server/freevps/extend/index", WorkflowStep.RENEWAL_REQUEST),
    ("/xapanel/xvps/server/freevps/extend/conf", WorkflowStep.CHALLENGE_SUBMIT),
    ("/xapanel/xvps/server/freevps/extend/do", WorkflowStep.CHALLENGE_SUBMIT),
]


def classify(path: str, routes: list[tuple[str, WorkflowStep]] = ROUTES) -> WorkflowStep:
    best_step = WorkflowStep.UNKNOWN
    best_len = -1
    for prefix, step in routes:
        if path.startswith(prefix) and len(prefix) > best_len:
            best_step, best_len = step, len(prefix)
    return best_step


@dataclass
class RunState:
    """Per page-load guard. Only the Router writes it."""
    running: bool = False
    step: WorkflowStep | None = None


Handler = Callable[[Any], Awaitable[Any]]


class Router:
    def __init__(
        self,
        handlers: dict[WorkflowStep, Handler],
        context: Any,
        state: RunState | None = None,
    ):
        self.handlers = handlers
        self.context = context
        self.state = state if state is not None else RunState()

    def dispatch(self, step: WorkflowStep) -> asyncio.Task | None:
        """Start the handler for ``step`` unless this run already started one.

        Returns the handler task, or None when nothing was started.
        """
        if step is WorkflowStep.UNKNOWN:
            print("[router] unsupported page, nothing to do", flush=True)
            return None
        if self.state.running:
            print(f"[router] already handling {self.state.step.value}, ignoring {step.value}", flush=True)
            return None

        handler = self.handlers.get(step)
        if handler is None:
            print(f"[router] no handler registered for {step.value}", flush=True)
            return None

        self.state.running = True
        self.state.step = step
        print(f"[router] dispatching {step.value}", flush=True)
        return asyncio.ensure_future(handler(self.context))

    def route(self, path: str) -> asyncio.Task | None:
        return self.dispatch(classify(path))
