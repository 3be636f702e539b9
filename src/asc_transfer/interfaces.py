from zope.interface import Attribute
from zope.interface import Interface


class ITransport(Interface):
    """Issues HTTP requests on behalf of the transfer components."""

    def request(method, url, content=None, headers=None, timeout=None):
        """Send one request and return an httpx.Response.

        ``content`` may be bytes or an iterator of bytes.
        """


class ICancelToken(Interface):
    """Cooperative cancellation signal shared between flows of control."""

    cancelled = Attribute("True once the token or any ancestor was cancelled.")

    def cancel(reason=None):
        """Cancel this token and every child token."""

    def on_cancel(callback):
        """Call callback() once when cancelled; return an unregister function."""

    def wait(timeout):
        """Block up to timeout seconds; return True if cancelled meanwhile."""

    def raise_if_cancelled():
        """Raise OperationCancelled if the token is cancelled."""


class IPageShape(Interface):
    """Access to the items and next link of one family of list responses."""

    def new_accumulator(page):
        """Return an empty page of the same shape as ``page``."""

    def get_items(page):
        """Return the list of items carried by ``page``."""

    def get_next_link(page):
        """Return the next-page link, or an empty string on the last page."""

    def append_items(accumulator, items):
        """Append ``items`` to the accumulator page."""

    def clear_next_link(accumulator):
        """Remove the next link from the accumulated result."""
