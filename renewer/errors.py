"""Error taxonomy for the renewal workflow.

Step handlers raise these; the handler boundary in ``handlers.py`` turns them
into a status message and a FAILED outcome. Wait timeouts are not errors:
``waiter.TimedOut`` is returned as a value instead.
"""


class StepError(Exception):
    """Base for failures local to one workflow step."""

    def __init__(self, message: str, user_message: str | None = None):
        super().__init__(message)
        self.user_message = user_message


class MissingElement(StepError):
    """A required page element is absent."""


class InvalidResponse(StepError):
    """An external call kept returning unusable data until retries ran out."""


class NavigationFailure(StepError):
    """A required redirect target could not be computed or applied."""


class RecognitionError(Exception):
    """Transport-level failure talking to a recognition backend."""
