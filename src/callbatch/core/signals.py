"""
Cancellation primitives.

An AbortSignal is a one-shot flag that can be triggered by its controller or
by a timer. Operations accept a list of signals and fail fast with the
signal's reason as soon as any of them fires.
"""

import asyncio
from typing import Awaitable, Callable, Iterable, List, Optional, TypeVar, Union

from callbatch.errors import Aborted, TimeoutExceeded

T = TypeVar("T")

AbortListener = Callable[["AbortSignal"], None]
AbortReason = Union[BaseException, str, None]


class AbortSignal:
    """
    One-shot cancellation flag.

    Listeners are invoked synchronously, in registration order, when the
    signal is aborted. A listener added to an already aborted signal is
    invoked immediately.
    """

    def __init__(self):
        self._aborted = False
        self._reason: Optional[BaseException] = None
        self._listeners: List[AbortListener] = []

    @property
    def aborted(self) -> bool:
        return self._aborted

    @property
    def reason(self) -> Optional[BaseException]:
        return self._reason

    def throw_if_aborted(self) -> None:
        """Raise the abort reason if the signal has fired."""
        if self._aborted:
            raise self._reason

    def add_listener(self, listener: AbortListener) -> Callable[[], None]:
        """
        Register an abort listener.

        Returns:
            Callable removing the listener again
        """
        if self._aborted:
            listener(self)
            return lambda: None

        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def _abort(self, reason: AbortReason = None) -> None:
        if self._aborted:
            return

        if reason is None:
            reason = Aborted()
        elif isinstance(reason, str):
            reason = Aborted(reason)

        self._aborted = True
        self._reason = reason

        listeners, self._listeners = self._listeners, []
        for listener in listeners:
            listener(self)

    def __repr__(self) -> str:
        return f"AbortSignal(aborted={self._aborted})"


class AbortController:
    """Owner of an AbortSignal."""

    def __init__(self):
        self.signal = AbortSignal()

    def abort(self, reason: AbortReason = None) -> None:
        """Trigger the signal; later calls are ignored."""
        self.signal._abort(reason)


class TimeoutSignal(AbortSignal):
    """Signal aborted with TimeoutExceeded after a delay."""

    def __init__(self, timeout_ms: float):
        super().__init__()
        self.timeout_ms = timeout_ms
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(
            timeout_ms / 1000,
            self._abort,
            TimeoutExceeded(timeout_ms),
        )

    def cancel(self) -> None:
        """Stop the timer without aborting."""
        self._handle.cancel()


def timeout_signal(timeout_ms: float) -> TimeoutSignal:
    """
    Create a signal that aborts after timeout_ms milliseconds.

    Must be called from within a running event loop.
    """
    return TimeoutSignal(timeout_ms)


def any_signal(signals: Iterable[AbortSignal]) -> AbortSignal:
    """
    Compose signals into one that fires when any of them fires.

    The composite detaches from every source once it fires.
    """
    controller = AbortController()
    removers: List[Callable[[], None]] = []

    def detach(_: AbortSignal) -> None:
        for remove in removers:
            remove()
        removers.clear()

    controller.signal.add_listener(detach)
    for signal in signals:
        if controller.signal.aborted:
            break
        removers.append(signal.add_listener(lambda s: controller.abort(s.reason)))
    return controller.signal


def check_signals(signals: Optional[Iterable[AbortSignal]]) -> None:
    """Raise the reason of the first aborted signal, if any."""
    if signals:
        for signal in signals:
            signal.throw_if_aborted()


async def race_with_signals(
    racer: Callable[[], Awaitable[T]],
    signals: Optional[Iterable[AbortSignal]] = None,
) -> T:
    """
    Await racer() unless one of the signals fires first.

    The racer is cancelled when a signal wins the race.

    Args:
        racer: Factory producing the awaitable to race
        signals: Signals to race against

    Returns:
        The racer's result

    Raises:
        The reason of the signal that fired first
    """
    signals = list(signals or [])
    check_signals(signals)

    task = asyncio.ensure_future(racer())
    if not signals:
        return await task

    loop = asyncio.get_running_loop()
    fired: asyncio.Future = loop.create_future()

    def on_abort(signal: AbortSignal) -> None:
        if not fired.done():
            fired.set_result(signal)

    removers = [signal.add_listener(on_abort) for signal in signals]
    try:
        await asyncio.wait({task, fired}, return_when=asyncio.FIRST_COMPLETED)
        if task.done():
            return task.result()
        raise fired.result().reason
    finally:
        for remove in removers:
            remove()
        if not task.done():
            task.cancel()
        if not fired.done():
            fired.cancel()


async def wait_with_signals(
    delay_ms: float,
    signals: Optional[Iterable[AbortSignal]] = None,
) -> None:
    """Sleep for delay_ms milliseconds, failing fast if a signal fires."""
    await race_with_signals(lambda: asyncio.sleep(delay_ms / 1000), signals)
