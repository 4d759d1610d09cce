"""Bounded-retry wrapper around one external call."""
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from errors import InvalidResponse


@dataclass(frozen=True)
class Success:
    value: Any
    attempts: int


@dataclass(frozen=True)
class Failure:
    error: str
    attempts: int

    def to_error(self, what: str = "external call") -> InvalidResponse:
        return InvalidResponse(f"{what} failed after {self.attempts} attempts: {self.error}")


def min_length(n: int) -> Callable[[Any], bool]:
    """Validator: a string with at least ``n`` characters once stripped."""
    def validate(response: Any) -> bool:
        return isinstance(response, str) and len(response.strip()) >= n
    return validate


class RetryingCaller:
    def __init__(self, call: Callable[[Any], Awaitable[Any]], name: str = "external call"):
        self._call = call
        self.name = name

    async def call(
        self,
        payload: Any,
        validate: Callable[[Any], bool],
        max_attempts: int = 3,
    ) -> Success | Failure:
        """Call until ``validate`` accepts a response or attempts run out.

        Exceptions from the call and rejected responses both use up an
        attempt. There is no delay between attempts.
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

        last_error = "no attempt made"
        for attempt in range(1, max_attempts + 1):
            try:
                response = await self._call(payload)
            except Exception as e:
                last_error = f"{type(e).__name__}: {e}"
            else:
                if validate(response):
                    return Success(response, attempt)
                last_error = f"invalid response {response!r}"

            if attempt < max_attempts:
                print(f"    [{self.name}] attempt {attempt}/{max_attempts} failed ({last_error}), retrying...",
                      flush=True)

        print(f"    [{self.name}] giving up after {max_attempts} attempts: {last_error}", flush=True)
        return Failure(last_error, max_attempts)
