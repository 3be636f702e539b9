from asc_transfer.errors import OperationCancelled
from asc_transfer.interfaces import ICancelToken
from zope.interface import implementer

import threading


@implementer(ICancelToken)
class CancelToken:
    """Cancellation signal built on a threading.Event.

    Child tokens are cancelled together with their parent, but cancelling
    a child leaves the parent untouched. This lets a pipeline stop its own
    workers without cancelling the caller.
    """

    def __init__(self, parent=None):
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._children = []
        self._callbacks = []
        self.reason = None
        if parent is not None:
            parent._adopt(self)

    def _adopt(self, child):
        with self._lock:
            if not self._event.is_set():
                self._children.append(child)
                return
        child.cancel(self.reason)

    def child(self):
        return CancelToken(parent=self)

    @property
    def cancelled(self):
        return self._event.is_set()

    def on_cancel(self, callback):
        """Call ``callback()`` once on cancellation; at once if already cancelled.

        Returns a function that unregisters the callback.
        """
        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(callback)
                return lambda: self._discard(callback)
        callback()
        return lambda: None

    def _discard(self, callback):
        with self._lock:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

    def cancel(self, reason=None):
        with self._lock:
            if self._event.is_set():
                return
            self.reason = reason
            self._event.set()
            children, self._children = self._children, []
            callbacks, self._callbacks = self._callbacks, []
        for child in children:
            child.cancel(reason)
        for callback in callbacks:
            callback()

    def wait(self, timeout):
        return self._event.wait(timeout)

    def raise_if_cancelled(self):
        if self._event.is_set():
            raise OperationCancelled(self.reason or "operation cancelled")

    def __repr__(self):
        state = "cancelled" if self.cancelled else "active"
        return f"<CancelToken {state}>"


def run_cancellable(operation, cancel, name=None):
    """Run ``operation()`` on a daemon thread and return its result.

    If ``cancel`` fires first, ``OperationCancelled`` is raised at once and
    the thread is left to finish on its own; its outcome is discarded.
    """
    cancel.raise_if_cancelled()
    done = threading.Event()
    outcome = {}

    def target():
        try:
            outcome["result"] = operation()
        except Exception as e:
            outcome["error"] = e
        finally:
            done.set()

    unregister = cancel.on_cancel(done.set)
    try:
        threading.Thread(target=target, name=name, daemon=True).start()
        done.wait()
    finally:
        unregister()
    if "error" in outcome:
        raise outcome["error"]
    if "result" in outcome:
        return outcome["result"]
    raise OperationCancelled(cancel.reason or "operation cancelled")
