from __future__ import annotations

import inspect
import sys
from collections.abc import Awaitable, Callable
from typing import Any, Union


if sys.version_info >= (3, 11):
    from typing import Self
else:
    from typing_extensions import Self


Listener = Callable[..., Union[Awaitable[Any], Any]]


class Events:
    """Ordered, awaitable listener chains keyed by event name.

    Lifecycle hooks (``creating``, ``saving``, ``destroying`` ...) are plain
    listeners. ``trigger`` runs them one at a time in registration order and
    awaits any awaitable they return; the first exception stops the chain
    and propagates, which is how a listener aborts a save or destroy before
    any SQL is issued.
    """

    _listeners: dict[str, list[Listener]]

    def on(self, names: str, callback: Listener) -> Self:
        """Register *callback* for each space-separated event in *names*."""
        listeners = self.__dict__.setdefault("_listeners", {})
        for name in names.split():
            listeners.setdefault(name, []).append(callback)

        return self

    def once(self, names: str, callback: Listener) -> Self:
        """Register *callback* to run at most once per event name."""
        for name in names.split():
            self.on(name, self._wrap_once(name, callback))

        return self

    def _wrap_once(self, name: str, callback: Listener) -> Listener:
        def _once(*args: Any) -> Any:
            self.off(name, _once)
            return callback(*args)

        return _once

    def off(self, names: str | None = None, callback: Listener | None = None) -> Self:
        """Remove listeners.

        With no arguments every listener is dropped; with only *names* every
        listener for those events; with both, only *callback*.
        """
        listeners = self.__dict__.get("_listeners")
        if not listeners:
            return self

        if names is None:
            listeners.clear()
            return self

        for name in names.split():
            if callback is None:
                listeners.pop(name, None)
            elif name in listeners:
                listeners[name] = [fn for fn in listeners[name] if fn is not callback]

        return self

    async def trigger(self, names: str, *args: Any) -> None:
        """Run every listener of each event in *names*, sequentially.

        Raises:
            Exception: Whatever the first failing listener raised.
        """
        listeners = self.__dict__.get("_listeners")
        if not listeners:
            return

        for name in names.split():
            for callback in tuple(listeners.get(name, ())):
                result = callback(*args)
                if inspect.isawaitable(result):
                    await result
