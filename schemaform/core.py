import logging
from typing import Callable, Any, List, Set

from schemaform.exceptions import global_error_handler

logger = logging.getLogger(__name__)

# Global state for reactive system
_current_effect = None
_trackable = False
_batch_updates_active = False
_batch_updates_queue = []
_global_error_handler = global_error_handler


def set_global_error_handler(handler: Callable[[Exception, str], None]):
    """Sets a global error handler for exceptions raised inside effects."""
    global _global_error_handler
    _global_error_handler = handler


def batch_updates(fn):
    """
    Runs ``fn`` with signal writes deferred until it returns, so subscribers
    see one consistent state instead of every intermediate write.
    """
    global _batch_updates_active, _batch_updates_queue
    prev_state = _batch_updates_active
    _batch_updates_active = True
    try:
        return fn()
    finally:
        _batch_updates_active = prev_state
        if not _batch_updates_active:
            queue_to_process = list(_batch_updates_queue)
            _batch_updates_queue.clear()
            changed = [signal for signal, new_value in queue_to_process if signal._store(new_value)]
            subscribers = {}
            for signal in changed:
                for subscriber in list(signal._subscribers):
                    subscribers.setdefault(subscriber, signal)
            for subscriber, signal in subscribers.items():
                try:
                    subscriber.notify(signal)
                except Exception as e:
                    signal._handle_error(e, f"Error notifying subscriber: {subscriber}")


class Signal:
    __slots__ = ('_subscribers', '_value')

    def __init__(self, initial_value: Any):
        self._subscribers = set()
        self._value = initial_value

    def __call__(self) -> Any:
        global _current_effect, _trackable
        if _trackable and _current_effect is not None:
            self._subscribers.add(_current_effect)
            _current_effect.dependencies.add(self)
        return self._value

    get = __call__

    def peek(self):
        return self._value

    def set(self, new_value: Any) -> None:
        queue_update(self, new_value)

    def _store(self, new_value) -> bool:
        """Replaces the value without notifying; returns whether it changed."""
        if self._value is new_value:
            return False
        try:
            if self._value == new_value:
                return False
        except Exception:
            # Values without a usable __eq__ always count as changed
            pass
        self._value = new_value
        return True

    def _set_value_internal(self, new_value):
        if not self._store(new_value):
            return

        subscribers_snapshot = list(self._subscribers)
        for subscriber in subscribers_snapshot:
            try:
                subscriber.notify(self)
            except Exception as e:
                self._handle_error(e, f"Error notifying subscriber: {subscriber}")

    def _handle_error(self, error, message):
        if _global_error_handler:
            _global_error_handler(error, message)
        else:
            logger.error(f"{message}: {error}")


def create_signal(initial_value: Any):
    signal = Signal(initial_value)
    return signal, signal.set


def queue_update(signal, new_value):
    global _batch_updates_active, _batch_updates_queue
    if _batch_updates_active:
        _batch_updates_queue.append((signal, new_value))
    else:
        signal._set_value_internal(new_value)


class Effect:
    __slots__ = ('fn', 'dependencies', 'disposals', 'is_running', 'disposed',
                 'dirty', '_error_count', '_max_errors')

    def __init__(self, fn: Callable[[], Any]):
        self.fn = fn
        self.dependencies: Set[Signal] = set()
        self.disposals: List[Callable[[], None]] = []
        self.is_running = False
        self.disposed = False
        self.dirty = False
        self._error_count = 0
        self._max_errors = 5  # Maximum number of errors before stopping

    def notify(self, signal):
        if self.dirty:
            return
        self.dirty = True
        self.run()

    def run(self):
        if self.disposed or self.is_running:
            return
        if self._error_count >= self._max_errors:
            logger.error(f"Effect {self.fn!r} exceeded {self._max_errors} errors; disposing it.")
            self.dispose()
            return

        self.is_running = True
        self.dirty = False
        global _current_effect, _trackable
        prev_effect = _current_effect
        prev_trackable = _trackable
        _current_effect = self

        self._cleanup()

        try:
            _trackable = True
            self.fn()
            self._error_count = 0
        except Exception as e:
            self._error_count += 1
            self._handle_error(e, "Error running effect")
        finally:
            _trackable = prev_trackable
            _current_effect = prev_effect
            self.is_running = False

    def _cleanup(self):
        for signal in list(self.dependencies):
            signal._subscribers.discard(self)
        self.dependencies.clear()

        for dispose in self.disposals:
            try:
                dispose()
            except Exception as e:
                self._handle_error(e, "Cleanup error")
        self.disposals.clear()

    def dispose(self):
        if self.disposed:
            return
        self.disposed = True
        self._cleanup()

    def _handle_error(self, error, message):
        if _global_error_handler:
            _global_error_handler(error, message)
        else:
            logger.error(f"{message}: {error}")


def create_effect(fn: Callable[[], Any]) -> Effect:
    """
    Runs ``fn`` now and again whenever a signal it read changes.
    """
    effect = Effect(fn)
    effect.run()
    return effect


def untrack(fn: Callable[[], Any]) -> Any:
    global _trackable
    if not callable(fn):
        raise TypeError(f"untrack: expected callable, got {type(fn).__name__}")
    prev_tracking = _trackable
    _trackable = False
    try:
        return fn()
    finally:
        _trackable = prev_tracking


def on_dispose(fn: Callable[[], None]) -> None:
    """Registers ``fn`` to run before the current effect re-runs or is disposed."""
    if _current_effect is None:
        raise RuntimeError("on_dispose must be called inside an effect")
    _current_effect.disposals.append(fn)
