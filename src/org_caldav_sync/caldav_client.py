"""
CalDAV calendar connectivity wrapper around the caldav library.
"""

import logging
from urllib.parse import quote
from urllib.parse import unquote
from urllib.parse import urlparse

import caldav
from caldav.elements import dav
from caldav.lib import error
from lxml import etree

from org_caldav_sync.models import ConnectivityError
from org_caldav_sync.models import ProtocolShapeError
from org_caldav_sync.models import RemoteStoreError

logger = logging.getLogger(__name__)

RESOURCE_EXTENSION = ".ics"

# Transport errors of caldav's HTTP client derive from OSError
_CALDAV_ERRORS = (error.DAVError, OSError)


def calendar_url(url: str, calendar_id: str) -> str:
    """Collection URL of a calendar below the server's base URL."""
    return f"{url.rstrip('/')}/{quote(calendar_id.strip('/'))}/"


def _etag_propfind() -> bytes:
    root = dav.Propfind() + [dav.Prop() + [dav.GetEtag()]]
    return etree.tostring(root.xmlelement(), encoding="utf-8", xml_declaration=True)


class CalDAVClient:
    """Wrapper for the CalDAV operations a sync run needs."""

    def __init__(
        self,
        url: str,
        calendar_id: str,
        username: str | None = None,
        password: str | None = None,
        client: caldav.DAVClient | None = None,
        timeout: int = 30,
    ):
        self.calendar_url = calendar_url(url, calendar_id)
        if client is None:
            client = caldav.DAVClient(
                url=self.calendar_url, username=username, password=password, timeout=timeout
            )
        self.client = client
        self.calendar = client.calendar(url=self.calendar_url)

    def resource_url(self, uid: str) -> str:
        return self.calendar_url + quote(uid, safe="") + RESOURCE_EXTENSION

    def _event(self, uid: str, data: str | None = None) -> caldav.Event:
        return caldav.Event(
            self.client, url=self.resource_url(uid), data=data, parent=self.calendar
        )

    # ------------------------------------------------------------------ #
    # Collection                                                           #
    # ------------------------------------------------------------------ #

    def check_reachable(self):
        """Raise ConnectivityError unless the calendar collection answers."""
        try:
            self.calendar.get_properties([dav.ResourceType()])
        except _CALDAV_ERRORS as e:
            raise ConnectivityError(f"Calendar {self.calendar_url} unreachable: {e}") from e

    def list_change_tokens(self) -> dict[str, str]:
        """Map uid → etag for every event resource in the calendar.

        An empty dict means the server listed the collection without any
        members.  Anything that cannot be read as such a listing raises
        ProtocolShapeError, since treating it as empty would delete every
        local event.
        """
        try:
            response = self.client.propfind(self.calendar_url, _etag_propfind(), depth=1)
        except _CALDAV_ERRORS as e:
            raise ConnectivityError(f"Could not list {self.calendar_url}: {e}") from e
        if response.status != 207:
            raise ProtocolShapeError(
                f"Unexpected status {response.status} listing {self.calendar_url}"
            )
        if response.tree is None:
            raise ProtocolShapeError(f"Malformed PROPFIND response from {self.calendar_url}")
        try:
            listing = response.expand_simple_props([dav.GetEtag()])
        except error.DAVError as e:
            raise ProtocolShapeError(f"Malformed PROPFIND response: {e}") from e

        if not listing:
            raise ProtocolShapeError(
                "PROPFIND response lists nothing, not even the calendar collection"
            )

        tokens: dict[str, str] = {}
        for href, props in listing.items():
            name = unquote(urlparse(href).path.rstrip("/").rsplit("/", 1)[-1])
            if not name.endswith(RESOURCE_EXTENSION):
                continue  # the collection itself, or a non-event member
            etag = props.get(dav.GetEtag.tag)
            if not etag:
                logger.warning(f"No etag for {href}, skipping")
                continue
            tokens[name[: -len(RESOURCE_EXTENSION)]] = etag.strip()

        if not tokens:
            logger.debug(f"Calendar {self.calendar_url} is empty")
        return tokens

    # ------------------------------------------------------------------ #
    # Resources                                                            #
    # ------------------------------------------------------------------ #

    def fetch_resource(self, uid: str) -> str | None:
        """Return the iCalendar text of an event, or None if it does not exist."""
        try:
            event = self.calendar.event_by_url(self.resource_url(uid))
        except error.NotFoundError:
            return None
        except _CALDAV_ERRORS as e:
            raise RemoteStoreError(f"Failed to fetch {uid}: {e}") from e
        return event.data

    def put_resource(self, uid: str, ical_string: str):
        """Create or replace an event, keeping the SEQUENCE it was given."""
        try:
            self._event(uid, ical_string).save(increase_seqno=False)
        except _CALDAV_ERRORS as e:
            raise RemoteStoreError(f"Failed to put {uid}: {e}") from e

    def delete_resource(self, uid: str):
        """Delete an event; a resource that is already gone counts as deleted."""
        try:
            self._event(uid).delete()
        except error.NotFoundError:
            logger.debug(f"{uid} already absent from calendar")
        except _CALDAV_ERRORS as e:
            raise RemoteStoreError(f"Failed to delete {uid}: {e}") from e
