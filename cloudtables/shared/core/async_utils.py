import asyncio
import inspect
from typing import Any, Awaitable, Optional, TypeVar

from cloudtables.shared.core.exceptions import ScanCancelledError

T = TypeVar("T")


async def maybe_await(value: Any) -> Any:
    """Await `value` if it's awaitable, otherwise return it directly.

    Provider clients are aioboto3 coroutines in production, but table tests and
    ad-hoc clients may hand back plain values.
    """
    if inspect.isawaitable(value):
        return await value
    return value


class CancelToken:
    """
    Cooperative cancellation signal shared by every branch of one scan.

    Every suspension point (rate-limit waits, backoff sleeps, provider I/O)
    goes through `sleep` or `guard`, so a fired token is observed promptly.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise ScanCancelledError(f"Scan cancelled: {self.reason}")

    async def wait(self) -> None:
        await self._event.wait()

    async def sleep(self, seconds: float) -> None:
        """Sleep for `seconds` unless cancelled first."""
        self.raise_if_cancelled()
        if seconds <= 0:
            return
        try:
            await asyncio.wait_for(self._event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return
        self.raise_if_cancelled()

    async def guard(self, awaitable: Awaitable[T]) -> T:
        """Await `awaitable`, abandoning it as soon as the token fires."""
        self.raise_if_cancelled()
        work = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            await asyncio.wait({work, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            work.cancel()
            raise
        finally:
            waiter.cancel()
        if work.done():
            return work.result()
        work.cancel()
        raise ScanCancelledError(f"Scan cancelled: {self.reason}")
