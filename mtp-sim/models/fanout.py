import logging
import threading
from typing import Any, Callable, Tuple

from interfaces import ValueSink

logger = logging.getLogger("ChangeFanout")


class CallbackSink(ValueSink):
    """Adapts a plain (key, value) callable to the ValueSink interface."""

    def __init__(self, callback: Callable[[str, Any], None]):
        self._callback = callback

    def update_value(self, key: str, value: Any) -> None:
        self._callback(key, value)


class ChangeFanout:
    """
    Delivers resolved value changes to every subscribed sink.

    Delivery is best-effort per sink: a failing sink is logged and skipped,
    the remaining sinks and the caller are unaffected. The subscriber list is
    copy-on-write, so subscribing during a notification pass is safe.
    """

    def __init__(self):
        self._sinks: Tuple[ValueSink, ...] = ()
        self._lock = threading.Lock()

    @property
    def sinks(self) -> Tuple[ValueSink, ...]:
        return self._sinks

    def subscribe(self, sink: ValueSink) -> ValueSink:
        with self._lock:
            if sink not in self._sinks:
                self._sinks = self._sinks + (sink,)
        return sink

    def unsubscribe(self, sink: ValueSink) -> None:
        with self._lock:
            self._sinks = tuple(s for s in self._sinks if s is not sink)

    def notify(self, key: str, value: Any, external: bool = False) -> None:
        """Publish one resolved value to every sink."""
        for sink in self._sinks:
            try:
                sink.update_value(key, value)
                if external:
                    sink.value_written(key, value)
            except Exception:
                logger.exception(f"Sink {type(sink).__name__} failed to handle {key}")

    def notify_loaded(self, variables: list) -> None:
        """Tell every sink that a new tree is active."""
        for sink in self._sinks:
            try:
                sink.tree_loaded(variables)
            except Exception:
                logger.exception(f"Sink {type(sink).__name__} failed to handle tree load")
