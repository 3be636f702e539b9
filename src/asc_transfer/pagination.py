"""Aggregation of paged list responses into one logical result.

Each family of list responses is registered with a page shape that knows
how to read its items and next link. The aggregation loop itself never
inspects a page directly, so a new family only needs a registration.
"""

from asc_transfer.cancel import run_cancellable
from asc_transfer.errors import OperationCancelled
from asc_transfer.errors import PageShapeMismatch
from asc_transfer.errors import PaginationError
from asc_transfer.errors import RepeatedPaginationURL
from asc_transfer.interfaces import IPageShape
from asc_transfer.transport import sanitize_url_for_log
from urllib.parse import urlsplit
from zope.interface import implementer

import logging


logger = logging.getLogger(__name__)


@implementer(IPageShape)
class ListResponseShape:
    """Shape of ``ListResponse`` objects (JSON:API ``data`` + ``links``)."""

    def new_accumulator(self, page):
        return type(page)()

    def get_items(self, page):
        return page.data

    def get_next_link(self, page):
        return (page.links or {}).get("next") or ""

    def append_items(self, accumulator, items):
        accumulator.data.extend(items)

    def clear_next_link(self, accumulator):
        accumulator.links.pop("next", None)


@implementer(IPageShape)
class DocumentShape:
    """Shape of raw decoded JSON:API documents (plain dicts)."""

    def new_accumulator(self, page):
        return {"data": [], "links": {}}

    def get_items(self, page):
        return page.get("data") or []

    def get_next_link(self, page):
        return (page.get("links") or {}).get("next") or ""

    def append_items(self, accumulator, items):
        accumulator["data"].extend(items)

    def clear_next_link(self, accumulator):
        accumulator["links"].pop("next", None)


class PageShapeRegistry:
    """Maps a page type (matched exactly, not by subclass) to its shape."""

    def __init__(self):
        self._shapes = {}

    def register(self, page_type, shape):
        if not IPageShape.providedBy(shape):
            raise TypeError(f"{shape!r} does not provide IPageShape")
        self._shapes[page_type] = shape

    def lookup(self, page):
        shape = self._shapes.get(type(page))
        if shape is None:
            raise PaginationError(
                f"unsupported response type for pagination: {type(page).__name__}"
            )
        return shape

    def __contains__(self, page_type):
        return page_type in self._shapes


page_shapes = PageShapeRegistry()
page_shapes.register(dict, DocumentShape())


def register_page_shape(shape, registry=None):
    """Class decorator registering a response family with ``shape``."""

    def decorator(cls):
        (registry or page_shapes).register(cls, shape)
        return cls

    return decorator


def aggregate_pages(first_page, fetch_next, cancel=None, registry=None):
    """Follow next links from ``first_page`` and concatenate all items.

    ``fetch_next(link)`` returns the page behind ``link``. Pages are
    fetched one at a time, in order. A cancel stops the wait for an
    in-flight fetch at once. The returned page has the type of
    ``first_page`` and no next link. A page of another type, or a next
    link that was already followed, is an error.
    """
    if first_page is None:
        return None
    shape = (registry or page_shapes).lookup(first_page)
    page_type = type(first_page)
    result = shape.new_accumulator(first_page)

    page = first_page
    page_number = 1
    seen = set()
    while True:
        shape.append_items(result, shape.get_items(page))
        next_link = shape.get_next_link(page)
        if not next_link:
            break
        page_number += 1
        if next_link in seen:
            raise RepeatedPaginationURL(
                "detected repeated pagination URL "
                f"{sanitize_url_for_log(next_link)}",
                page=page_number,
            )
        seen.add(next_link)

        try:
            if cancel is None:
                page = fetch_next(next_link)
            else:
                page = run_cancellable(
                    lambda: fetch_next(next_link), cancel, name="pagination-fetch"
                )
        except OperationCancelled:
            raise
        except Exception as e:
            raise PaginationError(str(e), page=page_number) from e
        if type(page) is not page_type:
            raise PageShapeMismatch(
                f"unexpected response type (expected {page_type.__name__}, "
                f"got {type(page).__name__})",
                page=page_number,
            )
        logger.debug("Fetched page %d", page_number)

    shape.clear_next_link(result)
    return result


def validate_next_url(next_url, base_url):
    """Reject absolute next links that leave ``base_url``'s host or https."""
    if not next_url or not next_url.startswith(("http://", "https://")):
        return
    try:
        parsed = urlsplit(next_url)
    except ValueError as e:
        raise PaginationError(f"invalid pagination URL: {e}") from e
    expected_host = urlsplit(base_url).netloc
    if parsed.netloc != expected_host:
        raise PaginationError(
            f"rejected pagination URL from untrusted host {parsed.netloc!r} "
            f"(expected {expected_host!r})"
        )
    if parsed.scheme != "https":
        raise PaginationError(
            f"rejected pagination URL with insecure scheme {parsed.scheme!r} "
            "(expected https)"
        )
