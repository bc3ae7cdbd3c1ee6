"""Observable state containers.

The controller keeps two of them: the persisted store holding the encrypted
vault blob, and the in-memory store holding the public session snapshot.
"""
from typing import Any, Callable, Optional
from collections.abc import Iterator, Mapping, MutableMapping

Listener = Callable[[dict], None]


class ObservableStore(MutableMapping[str, Any]):
    """Dict-like state holder that notifies subscribers on every change.

    Subscribers receive a shallow copy of the full state after each
    ``update_state``/``put_state``/item assignment. Last write wins.
    """

    def __init__(self, initial: Optional[Mapping[str, Any]] = None) -> None:
        self._data: dict[str, Any] = dict(initial) if initial else {}
        self._listeners: list[Listener] = []
        self._changed = False

    def __repr__(self) -> str:
        return f'<ObservableStore keys={list(self._data.keys())} changed={self._changed}>'

    # --- Subscription ---

    def subscribe(self, listener: Listener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def unsubscribe(self, listener: Listener) -> bool:
        try:
            self._listeners.remove(listener)
            return True
        except ValueError:
            return False

    def _notify(self) -> None:
        state = self.get_state()
        for listener in list(self._listeners):
            listener(state)

    # --- State API ---

    def get_state(self) -> dict:
        """Return a shallow copy of the current state."""
        return dict(self._data)

    def put_state(self, state: Mapping[str, Any]) -> None:
        """Replace the whole state."""
        self._data = dict(state)
        self.changed()

    def update_state(self, partial: Optional[Mapping[str, Any]] = None, **kwargs) -> None:
        """Merge ``partial`` and keyword arguments into the state."""
        if partial:
            self._data.update(partial)
        self._data.update(kwargs)
        self.changed()

    @property
    def is_changed(self) -> bool:
        return self._changed

    @is_changed.setter
    def is_changed(self, value: bool) -> None:
        self._changed = value

    def changed(self) -> None:
        self._changed = True
        self._notify()

    def invalidate(self) -> None:
        """Clear all state."""
        self._data = {}
        self.changed()

    # --- Magic Methods ---

    def __len__(self) -> int:
        return len(self._data)

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __contains__(self, key: object) -> bool:
        return key in self._data

    def __getitem__(self, key: str) -> Any:
        return self._data[key]

    def __setitem__(self, key: str, value: Any) -> None:
        self._data[key] = value
        self.changed()

    def __delitem__(self, key: str) -> None:
        del self._data[key]
        self.changed()
