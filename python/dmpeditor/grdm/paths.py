"""
Resolution of slash-delimited paths within a project's GRDM storage.

The GRDM files API only returns one level of a folder hierarchy per request, and the links
needed to go deeper (or to add content) are only discovered from the listing of the level
above.  Any operation on a deep path is therefore a chain of listing requests, one per path
segment, starting from the storage provider's root folder.  :py:class:`PathResolver`
centralizes that chain.
"""
import logging
from typing import List

from .transport import ResilientTransport
from .pager import PageFetcher
from .models import RemoteNode
from .exceptions import GRDMException, RemoteRequestFailed, PathResolutionFailed, WriteConflict
from . import schemas, DEF_STORAGE_PROVIDER

deflogger = logging.getLogger(__name__)

def split_path(path: str) -> List[str]:
    """
    split a slash-delimited path into its segments, ignoring leading, trailing, and
    repeated slashes
    """
    if not path:
        return []
    return [s for s in path.split('/') if s]

def find_child(children: List[RemoteNode], name: str) -> RemoteNode:
    """
    return the node in a folder listing with exactly the given name, or None
    """
    for child in children:
        if child.name == name:
            return child
    return None

class PathResolver:
    """
    a class that walks paths through a project's storage one folder listing at a time.
    """

    def __init__(self, transport: ResilientTransport, api_base_url: str,
                 provider: str=DEF_STORAGE_PROVIDER, page_size: int=None,
                 logger: logging.Logger=None):
        """
        :param transport:          the transport to send requests with
        :param str  api_base_url:  the base URL of the GRDM API (e.g. "https://api.rdm.nii.ac.jp/v2")
        :param str      provider:  the name of the storage provider holding the project's files
        :param int     page_size:  the page size to request for folder listings (if not set,
                                   the server's default is used)
        """
        self.transport = transport
        self.api_base_url = api_base_url.rstrip('/')
        self.provider = provider
        self.page_size = page_size
        self.log = logger or deflogger
        self.pager = PageFetcher(transport, self.log)

    def providers_url(self, project_id: str) -> str:
        """
        return the URL that lists the storage providers of a project
        """
        return f"{self.api_base_url}/nodes/{project_id}/files/"

    def folder_url(self, project_id: str, folder_id: str=None) -> str:
        """
        return the URL that lists the contents of a folder, given its ID.  If ``folder_id``
        is None, the URL for the provider's root folder is returned.
        """
        url = f"{self.api_base_url}/nodes/{project_id}/files/{self.provider}/"
        if folder_id:
            url += f"{folder_id}/"
        return url

    def _listing_params(self):
        if self.page_size:
            return { "page[size]": self.page_size }
        return None

    async def list_url(self, url: str) -> List[RemoteNode]:
        """
        return the complete contents of the folder listed at the given URL
        """
        items = await self.pager.fetch_all(url, True, schemas.FILE, self._listing_params())
        return [RemoteNode.from_json(item) for item in items]

    async def list_folder(self, folder: RemoteNode) -> List[RemoteNode]:
        """
        return the complete contents of a folder
        """
        if not folder.children_url:
            raise PathResolutionFailed("not a listable folder", folder.path)
        return await self.list_url(folder.children_url)

    async def root_folder(self, project_id: str) -> RemoteNode:
        """
        return the root folder of the project's storage provider
        """
        items = await self.pager.fetch_all(self.providers_url(project_id), True, schemas.FILE)
        for item in items:
            attrs = item['attributes']
            if attrs.get('provider', attrs['name']) == self.provider and attrs['kind'] == "folder":
                return RemoteNode.from_json(item)
        raise PathResolutionFailed("storage provider not found", self.provider)

    async def resolve(self, project_id: str, path: str) -> RemoteNode:
        """
        return the file or folder at the given path.  An empty path (or "/") resolves to
        the provider's root folder.

        :raises PathResolutionFailed:  if a segment of the path does not exist or if a
                                       segment other than the last is a file
        """
        current = await self.root_folder(project_id)
        segments = split_path(path)
        walked = []
        for i, seg in enumerate(segments):
            walked.append(seg)
            found = find_child(await self.list_folder(current), seg)
            if not found:
                raise PathResolutionFailed("node not found at", "/".join(walked))
            if i < len(segments) - 1 and not found.is_folder:
                raise PathResolutionFailed("expected folder, found file", "/".join(walked))
            current = found
        return current

    async def ensure_path(self, project_id: str, path: str) -> RemoteNode:
        """
        return the folder at the given path, creating any folders along the path that do
        not yet exist.  Folder creation failures abort the operation; folders created
        before the failure are left in place.

        :param str path:  the folder path (not including a file name)
        :raises PathResolutionFailed:  if a segment is a file or a folder could not be created
        """
        current = await self.root_folder(project_id)
        walked = []
        for seg in split_path(path):
            walked.append(seg)
            partial = "/".join(walked)
            found = find_child(await self.list_folder(current), seg)
            if found is None:
                await self._create_folder(current, seg, partial)
                # the creation response does not carry the listing links we need
                found = find_child(await self.list_folder(current), seg)
                if found is None:
                    raise PathResolutionFailed("created folder missing from listing", partial)
            if not found.is_folder:
                raise PathResolutionFailed("expected folder, found file", partial)
            current = found
        return current

    async def _create_folder(self, parent: RemoteNode, name: str, path: str):
        if not parent.new_folder_url:
            raise PathResolutionFailed("folder creation not supported in", parent.path)

        self.log.info("Creating folder %s", path)
        try:
            resp = await self.transport.execute("PUT", parent.new_folder_url, params={"name": name})
            if resp.status_code < 200 or resp.status_code >= 300:
                raise RemoteRequestFailed(resp.status_code, parent.new_folder_url, resp.reason,
                                          resp.text)
        except GRDMException as ex:
            raise PathResolutionFailed("failed to create folder", path, cause=ex) from ex

    async def put_file(self, project_id: str, path: str, content, overwrite: bool=False) -> None:
        """
        upload content to a file at the given path, creating missing parent folders.

        :param str      path:  the path to the file, including its name
        :param       content:  the content to write, as bytes or str (which will be UTF-8 encoded)
        :param bool overwrite: if False, fail if the file already exists
        :raises WriteConflict:         if the file exists and ``overwrite`` is False
        :raises PathResolutionFailed:  if the parent folders cannot be resolved or created, or
                                       if the path names an existing folder
        :raises RemoteRequestFailed:   if the upload is rejected
        """
        segments = split_path(path)
        if not segments:
            raise PathResolutionFailed("no file name given in path", path)
        name = segments[-1]
        parent = await self.ensure_path(project_id, "/".join(segments[:-1]))

        existing = find_child(await self.list_folder(parent), name)
        if existing:
            if existing.is_folder:
                raise PathResolutionFailed("expected file, found folder", "/".join(segments))
            if not overwrite:
                raise WriteConflict("/".join(segments))
            url, params = existing.upload_url, None
        else:
            url, params = parent.upload_url, { "name": name }
        if not url:
            raise PathResolutionFailed("upload not supported for", "/".join(segments))

        if isinstance(content, str):
            content = content.encode('utf-8')

        self.log.debug("Uploading %d bytes to %s", len(content), "/".join(segments))
        resp = await self.transport.execute("PUT", url, params=params, data=content)
        if resp.status_code < 200 or resp.status_code >= 300:
            raise RemoteRequestFailed(resp.status_code, url, resp.reason, resp.text)
