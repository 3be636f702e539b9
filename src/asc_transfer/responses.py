"""List responses of the publishing API, one class per resource family.

Only the envelope is modelled; resource objects stay plain dicts.
"""

from asc_transfer.pagination import ListResponseShape
from asc_transfer.pagination import register_page_shape


_shape = ListResponseShape()


class ListResponse:
    """A JSON:API list document: ``data`` plus ``links``, ``included``, ``meta``."""

    resource_type = None

    def __init__(self, data=None, links=None, included=None, meta=None):
        self.data = list(data or [])
        self.links = dict(links or {})
        self.included = list(included or [])
        self.meta = dict(meta or {})

    @classmethod
    def from_dict(cls, payload):
        payload = payload or {}
        return cls(
            data=payload.get("data"),
            links=payload.get("links"),
            included=payload.get("included"),
            meta=payload.get("meta"),
        )

    def to_dict(self):
        document = {"data": list(self.data), "links": dict(self.links)}
        if self.included:
            document["included"] = list(self.included)
        if self.meta:
            document["meta"] = dict(self.meta)
        return document

    @property
    def next_link(self):
        return self.links.get("next") or ""

    def __repr__(self):
        return f"<{type(self).__name__} items={len(self.data)}>"


@register_page_shape(_shape)
class AppsResponse(ListResponse):
    resource_type = "apps"


@register_page_shape(_shape)
class BuildsResponse(ListResponse):
    resource_type = "builds"


@register_page_shape(_shape)
class BuildUploadsResponse(ListResponse):
    resource_type = "buildUploads"


@register_page_shape(_shape)
class BuildUploadFilesResponse(ListResponse):
    resource_type = "buildUploadFiles"


@register_page_shape(_shape)
class BetaGroupsResponse(ListResponse):
    resource_type = "betaGroups"


@register_page_shape(_shape)
class BetaTestersResponse(ListResponse):
    resource_type = "betaTesters"


@register_page_shape(_shape)
class AppStoreVersionsResponse(ListResponse):
    resource_type = "appStoreVersions"


@register_page_shape(_shape)
class AppScreenshotSetsResponse(ListResponse):
    resource_type = "appScreenshotSets"


@register_page_shape(_shape)
class CertificatesResponse(ListResponse):
    resource_type = "certificates"


@register_page_shape(_shape)
class DevicesResponse(ListResponse):
    resource_type = "devices"


@register_page_shape(_shape)
class ProfilesResponse(ListResponse):
    resource_type = "profiles"


@register_page_shape(_shape)
class UsersResponse(ListResponse):
    resource_type = "users"


@register_page_shape(_shape)
class ReviewsResponse(ListResponse):
    resource_type = "customerReviews"


@register_page_shape(_shape)
class LinkagesResponse(ListResponse):
    """Relationship linkages: ``data`` holds only ``{type, id}`` identifiers."""
