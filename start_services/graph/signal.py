"""One-shot completion signal shared by a task and its dependents."""

import asyncio


class CompletionSignal:
    """One-shot, multi-observer notification of a task's outcome.

    The owning task publishes its success flag exactly once; any number of
    dependents may wait on it, before or after publication. Publishing never
    blocks, so the signal needs no capacity sizing.

    Example:
        >>> signal = CompletionSignal("build")
        >>> signal.publish(True)
        >>> await signal.wait()
        True
    """

    def __init__(self, task_name: str):
        self.task_name = task_name
        self._event = asyncio.Event()
        self._succeeded: bool | None = None

    def publish(self, succeeded: bool) -> None:
        """Publish the task's outcome to every current and future waiter.

        Raises:
            RuntimeError: If the outcome was already published
        """
        if self._event.is_set():
            msg = f"Completion of task '{self.task_name}' already published"
            raise RuntimeError(msg)
        self._succeeded = succeeded
        self._event.set()

    async def wait(self) -> bool:
        """Wait until the outcome is published and return it."""
        await self._event.wait()
        return bool(self._succeeded)

    @property
    def is_published(self) -> bool:
        return self._event.is_set()

    @property
    def succeeded(self) -> bool | None:
        """Published outcome, or None while the task has not finished."""
        return self._succeeded

    def __repr__(self) -> str:
        return f"CompletionSignal({self.task_name!r}, succeeded={self._succeeded!r})"
