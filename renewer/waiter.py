"""Race several detection strategies for one page condition.

A ``WaitCondition`` says what to wait for (an async predicate) and how to
notice it (a set of ``DetectionStrategy`` values). ``ConditionWaiter.wait_for``
starts every configured strategy plus a timeout timer, resolves with the first
signal and cancels everything else before returning. A timeout is a normal
``TimedOut`` result; callers decide whether it is fatal.
"""
import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable

from page import PageActuator, Subscription


class DetectionStrategy(str, Enum):
    IMMEDIATE = "immediate"
    MUTATION = "mutation"
    ADDED_TARGET = "added_target"
    EXTERNAL_POLL = "external_poll"
    DIRECT_POLL = "direct_poll"


ALL_OBSERVERS = frozenset({
    DetectionStrategy.IMMEDIATE,
    DetectionStrategy.MUTATION,
    DetectionStrategy.ADDED_TARGET,
    DetectionStrategy.EXTERNAL_POLL,
})
POLLING = frozenset({DetectionStrategy.IMMEDIATE, DetectionStrategy.DIRECT_POLL})


@dataclass
class WaitCondition:
    predicate: Callable[[], Awaitable[bool]]
    timeout: float
    strategies: frozenset[DetectionStrategy] = POLLING
    target: str | None = None  # selector watched by MUTATION / ADDED_TARGET
    external_getter: Callable[[], Awaitable[Any]] | None = None
    poll_interval: float = 1.0
    description: str = "condition"


@dataclass(frozen=True)
class Resolution:
    strategy: DetectionStrategy
    elapsed: float
    value: Any = None


@dataclass(frozen=True)
class TimedOut:
    timeout: float
    description: str


class ConditionWaiter:
    def __init__(self, page: PageActuator, verbose: bool = True):
        self.page = page
        self.verbose = verbose

    async def wait_for(self, condition: WaitCondition) -> Resolution | TimedOut:
        race = _Race(self.page, condition, self.verbose)
        return await race.run()


@dataclass
class _Race:
    page: PageActuator
    condition: WaitCondition
    verbose: bool = True
    tasks: set[asyncio.Task] = field(default_factory=set)
    subscriptions: list[Subscription] = field(default_factory=list)
    observing_target: bool = False

    def __post_init__(self):
        self.outcome: asyncio.Future = asyncio.get_running_loop().create_future()
        self.started = time.monotonic()

    async def run(self) -> Resolution | TimedOut:
        c = self.condition
        if DetectionStrategy.IMMEDIATE in c.strategies and await self._holds(DetectionStrategy.IMMEDIATE):
            return Resolution(DetectionStrategy.IMMEDIATE, 0.0)

        try:
            self._spawn(self._expire())
            if DetectionStrategy.MUTATION in c.strategies and c.target:
                await self._observe_target()
            if DetectionStrategy.ADDED_TARGET in c.strategies and c.target and not self.outcome.done():
                self._track(await self.page.observe_added(c.target, self._on_target_added))
            if DetectionStrategy.EXTERNAL_POLL in c.strategies and c.external_getter:
                self._spawn(self._poll_external())
            if DetectionStrategy.DIRECT_POLL in c.strategies:
                self._spawn(self._poll_predicate())
            return await self.outcome
        finally:
            await self._release()

    def _resolve(self, result: Resolution | TimedOut) -> bool:
        """First caller wins; everybody after that is a no-op."""
        if self.outcome.done():
            return False
        self.outcome.set_result(result)
        current = asyncio.current_task()
        for task in self.tasks:
            if task is not current:
                task.cancel()
        if self.verbose:
            if isinstance(result, TimedOut):
                print(f"    [waiter] {self.condition.description}: timed out after {result.timeout}s", flush=True)
            else:
                print(f"    [waiter] {self.condition.description}: {result.strategy.value} "
                      f"after {result.elapsed:.1f}s", flush=True)
        return True

    def _signal(self, strategy: DetectionStrategy, value: Any = None) -> bool:
        return self._resolve(Resolution(strategy, time.monotonic() - self.started, value))

    def _spawn(self, coro) -> None:
        if self.outcome.done():
            coro.close()
            return
        task = asyncio.ensure_future(coro)
        self.tasks.add(task)
        task.add_done_callback(self.tasks.discard)

    def _track(self, subscription: Subscription | None) -> None:
        if subscription is not None:
            self.subscriptions.append(subscription)

    async def _release(self) -> None:
        pending = list(self.tasks)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        for subscription in self.subscriptions:
            await subscription.cancel()

    async def _holds(self, strategy: DetectionStrategy) -> bool:
        """Evaluate the predicate; an error counts as "not yet"."""
        try:
            return bool(await self.condition.predicate())
        except Exception as e:
            print(f"    [waiter] {self.condition.description}: predicate error via {strategy.value}: {e}",
                  flush=True)
            return False

    async def _check(self, strategy: DetectionStrategy) -> None:
        if self.outcome.done():
            return
        if await self._holds(strategy):
            self._signal(strategy)

    async def _expire(self) -> None:
        await asyncio.sleep(self.condition.timeout)
        self._resolve(TimedOut(self.condition.timeout, self.condition.description))

    async def _observe_target(self, again: bool = False, node_ref: str | None = None) -> None:
        if (self.observing_target and not again) or self.outcome.done():
            return
        subscription = await self.page.observe(self.condition.target, self._on_change, node_ref)
        if subscription is not None:
            self.observing_target = True
            self._track(subscription)

    def _on_change(self, payload: dict | None = None) -> None:
        if not self.outcome.done():
            self._spawn(self._check(DetectionStrategy.MUTATION))

    def _on_target_added(self, payload: dict | None = None) -> None:
        if not self.outcome.done():
            self._spawn(self._attach_and_check((payload or {}).get("node")))

    async def _attach_and_check(self, node_ref: str | None = None) -> None:
        # A freshly added node is a different element; observe that node too
        if DetectionStrategy.MUTATION in self.condition.strategies:
            await self._observe_target(again=True, node_ref=node_ref)
        await self._check(DetectionStrategy.ADDED_TARGET)

    async def _poll_predicate(self) -> None:
        while not self.outcome.done():
            await asyncio.sleep(self.condition.poll_interval)
            await self._check(DetectionStrategy.DIRECT_POLL)

    async def _poll_external(self) -> None:
        getter = self.condition.external_getter
        while not self.outcome.done():
            await asyncio.sleep(self.condition.poll_interval)
            try:
                value = await getter()
            except Exception:
                # Widget API not ready yet; try again next tick
                continue
            if isinstance(value, str) and value:
                self._signal(DetectionStrategy.EXTERNAL_POLL, value)
