"""
Support for draining cursor-paginated GRDM listings
"""
import logging
from collections.abc import Mapping
from typing import List

import requests

from .transport import ResilientTransport
from .exceptions import RemoteRequestFailed, AuthenticationFailure, MalformedResponse
from . import schemas

deflogger = logging.getLogger(__name__)

def check_response(resp: requests.Response, url: str, schema: Mapping=None):
    """
    interpret a response to a JSON request: raise an exception if its status is not 2xx or
    its body cannot be parsed, and otherwise return the parsed (and, if a schema is given,
    validated) body.

    :raises AuthenticationFailure:  if the status is 401 or 403
    :raises RemoteRequestFailed:    for any other non-2xx status
    :raises MalformedResponse:      if the body is not JSON or does not match ``schema``
    """
    if resp.status_code in (401, 403):
        raise AuthenticationFailure(resp.status_code, url, resp.reason, resp.text)
    if resp.status_code < 200 or resp.status_code >= 300:
        raise RemoteRequestFailed(resp.status_code, url, resp.reason, resp.text)

    try:
        body = resp.json()
    except ValueError as ex:
        raise MalformedResponse("Expected JSON response; got: " + (resp.text or "")[:200],
                                url, resp.text, ex) from ex

    if schema is not None:
        schemas.validate(body, schema, url)
    return body


class PageFetcher:
    """
    a utility for retrieving all of the items in a paginated listing.  Pages are requested
    one at a time, following the ``links.next`` URL of each page, and their items are
    accumulated in the order the server returns them.
    """

    def __init__(self, transport: ResilientTransport, logger: logging.Logger=None):
        self.transport = transport
        self.log = logger or deflogger

    async def fetch_all(self, start_url: str, follow_pagination: bool=True,
                        item_schema: Mapping=schemas.FILE, params: Mapping=None) -> List[Mapping]:
        """
        retrieve the items from a listing.

        The operation is all-or-nothing: if any page fails, the items gathered from earlier
        pages are discarded and the failure is raised.

        :param str        start_url:  the URL of the first page
        :param bool follow_pagination: if False, only the first page is retrieved
        :param Mapping  item_schema:  the schema each item in the listing must match
        :param Mapping       params:  query parameters to add to the first page request
                                      (the ``next`` URLs already carry their own)
        :return:  the items from all retrieved pages, in order
        :raises RemoteRequestFailed:  if any page request returns a non-2xx status
        :raises MalformedResponse:    if any page fails to parse or validate
        :raises RetriesExhausted:     if any page request fails for transient reasons
        """
        pschema = schemas.page_schema(item_schema)
        items = []
        url = start_url
        kwargs = { "params": params } if params else {}
        pages = 0
        while url:
            resp = await self.transport.execute("GET", url, **kwargs)
            page = check_response(resp, url, pschema)
            pages += 1
            items.extend(page['data'])

            if not follow_pagination:
                break
            url = page['links'].get('next')
            kwargs = {}

        self.log.debug("Retrieved %d item%s in %d page%s from %s", len(items),
                       "s" if len(items) != 1 else "", pages, "s" if pages != 1 else "", start_url)
        return items
