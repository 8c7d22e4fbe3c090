"""Multicast listeners for process output.

shellcast listeners module v0.1.0

A listener is anything with a ``receive(text)`` method. Several listeners are
chained into an immutable binary tree of ``ListenerPair`` nodes:

- ``add(existing, new)`` returns a new pair, never touching ``existing``
- ``remove(existing, old)`` rebuilds only the path that changed and returns
  ``existing`` itself when nothing was removed
- ``ListenerPair.receive`` forwards to ``a`` then ``b`` in the calling thread

Because trees are never mutated, a reader thread that fetched a node keeps a
consistent view for the whole dispatch while another thread swaps in a new
tree through ``ListenerSlot``.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Callable, Optional, Protocol, runtime_checkable

__all__ = [
    "Listener",
    "NULL_LISTENER",
    "FunctionListener",
    "ListenerPair",
    "ListenerSlot",
    "add",
    "remove",
]


@runtime_checkable
class Listener(Protocol):
    """Receives chunks of text from a process stream."""

    def receive(self, text: str) -> None: ...


class _NullListener:
    """Listener that ignores everything it receives."""

    def receive(self, text: str) -> None:
        pass

    def __repr__(self) -> str:
        return "NULL_LISTENER"


NULL_LISTENER: Listener = _NullListener()


@dataclass(frozen=True, eq=False)
class FunctionListener:
    """Adapts a plain callable to the listener protocol.

    Keep the returned object around: removal matches by identity, so the
    same ``FunctionListener`` instance must be passed to ``remove``.
    """

    func: Callable[[str], None]

    def receive(self, text: str) -> None:
        self.func(text)


@dataclass(frozen=True, eq=False)
class ListenerPair:
    """Immutable node forwarding each chunk to ``a`` and then to ``b``.

    No isolation between children: if ``a.receive`` raises, ``b`` is not
    called for that chunk. The tree is walked with an explicit stack, so
    long chains built by repeated ``add`` do not hit the recursion limit.
    """

    a: Listener
    b: Listener

    def receive(self, text: str) -> None:
        pending: list[Listener] = [self.b, self.a]
        while pending:
            node = pending.pop()
            if isinstance(node, ListenerPair):
                pending.append(node.b)
                pending.append(node.a)
            else:
                node.receive(text)


def add(existing: Optional[Listener], to_add: Optional[Listener]) -> Optional[Listener]:
    """Compose ``to_add`` after ``existing``.

    Args:
        existing: Current node (may be None)
        to_add: Listener or node to append (may be None)

    Returns:
        The other argument if either is None, otherwise a new ListenerPair
    """
    if existing is None:
        return to_add
    if to_add is None:
        return existing
    return ListenerPair(existing, to_add)


def remove(existing: Optional[Listener], to_remove: Optional[Listener]) -> Optional[Listener]:
    """Remove ``to_remove`` (matched by identity) from the tree ``existing``.

    Args:
        existing: Current node (may be None)
        to_remove: Listener to take out

    Returns:
        The pruned tree. Subtrees that did not contain ``to_remove`` are
        shared with ``existing``; if nothing changed, ``existing`` itself is
        returned.
    """
    if existing is None or existing is to_remove:
        return None
    if not isinstance(existing, ListenerPair):
        return existing

    # Post-order walk with explicit stacks; results holds pruned subtrees
    pending: list[tuple[Listener, bool]] = [(existing, False)]
    results: list[Optional[Listener]] = []
    while pending:
        node, expanded = pending.pop()
        if expanded:
            b = results.pop()
            a = results.pop()
            if a is node.a and b is node.b:
                results.append(node)
            else:
                results.append(add(a, b))
        elif node is to_remove:
            results.append(None)
        elif not isinstance(node, ListenerPair):
            results.append(node)
        elif to_remove is node.a:
            results.append(node.b)
        elif to_remove is node.b:
            results.append(node.a)
        else:
            pending.append((node, True))
            pending.append((node.b, False))
            pending.append((node.a, False))
    return results[0]


class ListenerSlot:
    """Holder for the current listener tree of one stream.

    Mutations build a new tree and swap the reference under a lock so that
    concurrent ``add``/``remove`` calls never lose each other's updates.
    ``get`` takes no lock: it reads a single reference to an immutable tree.
    """

    def __init__(self) -> None:
        self._node: Optional[Listener] = None
        self._lock = threading.Lock()

    @property
    def node(self) -> Optional[Listener]:
        """Current tree, or None when no listener is registered."""
        return self._node

    def get(self) -> Listener:
        node = self._node
        return node if node is not None else NULL_LISTENER

    def add(self, listener: Optional[Listener]) -> None:
        with self._lock:
            self._node = add(self._node, listener)

    def remove(self, listener: Optional[Listener]) -> None:
        with self._lock:
            self._node = remove(self._node, listener)
