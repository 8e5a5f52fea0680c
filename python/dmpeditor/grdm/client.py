"""
a client for the GRDM service intended for use by the DMP editor for reading and writing
DMP projects and for browsing the files of the projects a DMP refers to.
"""
import json, logging
from collections.abc import Mapping
from typing import List, Tuple

import requests

from dmpeditor.base.config import ConfigurationException, get_bool, get_number
from .transport import ResilientTransport, TokenSource
from .pager import PageFetcher, check_response
from .paths import PathResolver
from .models import RemoteNode, ProjectInfo, User, FILE
from .exceptions import *
from . import schemas
from . import (PROD_API_BASE_URL, DEV_API_BASE_URL, PROD_WEB_BASE_URL, DEV_WEB_BASE_URL,
               DEF_STORAGE_PROVIDER, DMP_PROJECT_PREFIX, DEF_DMP_FILE_PATH, use_dev_env)

deflogger = logging.getLogger(__name__)

class GRDMClient:
    """
    a client for the GRDM API.  All methods that contact the service are coroutines.

    This client looks for the following parameters in the configuration passed in at
    construction time (all are optional):

    ``api_base_url``
         (str) the base URL of the GRDM API, up to and including the version field.
    ``web_base_url``
         (str) the base URL of the GRDM web interface.
    ``use_dev_env``
         (bool) if True, the default base URLs point to the GRDM development instance
         rather than production.  The ``DMPEDITOR_USE_GRDM_DEV_ENV`` environment variable
         has the same effect.
    ``storage_provider``
         (str) the storage provider holding project files (default: osfstorage)
    ``project_prefix``
         (str) the title prefix that marks a project as a DMP project (default: dmp-project-)
    ``dmp_file_path``
         (str) the path within a DMP project where the DMP document is stored
    ``page_size``
         (int) the page size to request for listings
    ``retries``, ``timeout``, ``backoff``, ``max_workers``
         the transport's retry policy and request concurrency (see :py:class:`~dmpeditor.grdm.transport.ResilientTransport`)
    """

    def __init__(self, config: Mapping=None, token: TokenSource=None,
                 session: requests.Session=None, logger: logging.Logger=None):
        """
        create the client

        :param dict config:  the configuration to use
        :param       token:  the user's access token, or a function that returns it
        :param     session:  the requests Session to send requests with
        :param      logger:  the Logger to send messages to
        """
        if config is None:
            config = {}
        self.cfg = config
        self.log = logger or deflogger

        dev = get_bool(config, 'use_dev_env', False) or use_dev_env()
        self.api_base_url = (config.get('api_base_url') or
                             (DEV_API_BASE_URL if dev else PROD_API_BASE_URL)).rstrip('/')
        self.web_base_url = (config.get('web_base_url') or
                             (DEV_WEB_BASE_URL if dev else PROD_WEB_BASE_URL)).rstrip('/')
        if not self.api_base_url.startswith("http"):
            raise ConfigurationException("api_base_url: not an HTTP URL: " + self.api_base_url,
                                         'api_base_url')

        self.project_prefix = config.get('project_prefix', DMP_PROJECT_PREFIX)
        self.dmp_file_path = config.get('dmp_file_path', DEF_DMP_FILE_PATH)
        page_size = config.get('page_size')
        if page_size is not None:
            page_size = get_number(config, 'page_size', None, int)

        self.transport = ResilientTransport.from_config(config, token, session,
                                                        self.log.getChild("transport"))
        self.pager = PageFetcher(self.transport, self.log)
        self.paths = PathResolver(self.transport, self.api_base_url,
                                  config.get('storage_provider', DEF_STORAGE_PROVIDER),
                                  page_size, self.log)

    def close(self):
        """
        release the network resources held by this client
        """
        self.transport.close()

    async def _get_json(self, url: str, schema: Mapping):
        resp = await self.transport.execute("GET", url)
        return check_response(resp, url, schema)

    async def get_me(self) -> User:
        """
        return a description of the user that owns the access token

        :raises AuthenticationFailure:  if the token is not accepted
        """
        body = await self._get_json(f"{self.api_base_url}/users/me/", schemas.USER_RESPONSE)
        return User.from_json(body['data'])

    async def authenticate(self) -> bool:
        """
        return True if the access token is accepted by the service.  Failures are logged
        rather than raised.
        """
        try:
            await self.get_me()
            return True
        except GRDMException as ex:
            self.log.error("Failed to authenticate with GRDM: %s", str(ex))
            return False

    async def list_projects(self, prefix: str=None) -> List[ProjectInfo]:
        """
        return the projects visible to the user, in the order the service lists them

        :param str prefix:  if given, only return projects whose titles start with it
        """
        items = await self.pager.fetch_all(f"{self.api_base_url}/nodes/", True, schemas.PROJECT)
        out = [ProjectInfo.from_json(item) for item in items]
        if prefix:
            out = [p for p in out if p.title.startswith(prefix)]
        return out

    async def list_dmp_projects(self) -> List[ProjectInfo]:
        """
        return the projects that hold DMPs (i.e. whose titles carry the DMP project prefix)
        """
        return await self.list_projects(self.project_prefix)

    async def linkable_projects(self) -> List[ProjectInfo]:
        """
        return the projects that a DMP can be linked to: every project that is not itself
        a DMP project
        """
        return [p for p in await self.list_projects()
                  if not p.title.startswith(self.project_prefix)]

    async def get_project_info(self, project_id: str) -> ProjectInfo:
        """
        return a description of the project with the given ID
        """
        body = await self._get_json(f"{self.api_base_url}/nodes/{project_id}/",
                                    schemas.PROJECT_RESPONSE)
        return ProjectInfo.from_json(body['data'])

    async def create_project(self, name: str, description: str=None,
                             category: str="project") -> ProjectInfo:
        """
        create a new project with the given title and return its description
        """
        url = f"{self.api_base_url}/nodes/"
        attrs = { "title": name, "category": category }
        if description:
            attrs['description'] = description
        self.log.info("Creating GRDM project, %s", name)
        resp = await self.transport.execute("POST", url, json={"data": {"type": "nodes",
                                                                        "attributes": attrs}})
        body = check_response(resp, url, schemas.PROJECT_RESPONSE)
        return ProjectInfo.from_json(body['data'])

    async def create_dmp_project(self, name: str) -> ProjectInfo:
        """
        create a new DMP project.  The project's title will be the given name with the DMP
        project prefix prepended.

        :raises WriteConflict:  if a DMP project with that title already exists
        """
        title = self.project_prefix + name
        if any(p.title == title for p in await self.list_dmp_projects()):
            raise WriteConflict(title, f"{title}: a project with this name already exists")
        return await self.create_project(title)

    async def list_children(self, project_id: str, folder_id: str=None) -> List[RemoteNode]:
        """
        return the contents of one folder level of a project's storage.

        :param str project_id:  the project's ID
        :param str  folder_id:  the ID of the folder to list, or None for the root folder
        """
        return await self.paths.list_url(self.paths.folder_url(project_id, folder_id))

    async def read_file(self, project_id: str, path: str, binary: bool=False) -> Tuple[object, RemoteNode]:
        """
        return the contents of the file at the given path along with its description

        :param bool binary:  if True, return the content as bytes; otherwise, as str
        :raises PathResolutionFailed:  if the path does not resolve to a file
        :raises MalformedResponse:  if ``binary`` is False and the content is not UTF-8 text
        """
        node = await self.paths.resolve(project_id, path)
        if node.kind != FILE:
            raise PathResolutionFailed("expected file, found folder", path)
        if not node.content_url:
            raise MalformedResponse(f"{path}: file listing carries no download link")

        resp = await self.transport.execute("GET", node.content_url)
        if resp.status_code < 200 or resp.status_code >= 300:
            raise RemoteRequestFailed(resp.status_code, node.content_url, resp.reason, resp.text)
        if binary:
            return resp.content, node
        try:
            return resp.content.decode('utf-8'), node
        except UnicodeDecodeError as ex:
            raise MalformedResponse(f"{path}: file content is not UTF-8 text: {str(ex)}",
                                    node.content_url, cause=ex) from ex

    async def write_file(self, project_id: str, path: str, content, overwrite: bool=False) -> None:
        """
        write content to the file at the given path, creating parent folders as needed

        :raises WriteConflict:  if the file exists and ``overwrite`` is False
        """
        await self.paths.put_file(project_id, path, content, overwrite)

    async def read_dmp_file(self, project_id: str) -> Tuple[Mapping, RemoteNode]:
        """
        return the DMP document stored in the given DMP project, along with the description
        of the file holding it
        """
        content, node = await self.read_file(project_id, self.dmp_file_path)
        try:
            dmp = json.loads(content)
        except ValueError as ex:
            raise MalformedResponse(f"{self.dmp_file_path}: DMP file is not valid JSON: {str(ex)}",
                                    node.content_url, content, ex) from ex
        if not isinstance(dmp, Mapping):
            raise MalformedResponse(f"{self.dmp_file_path}: DMP file does not contain an object",
                                    node.content_url, content)
        return dmp, node

    async def write_dmp_file(self, project_id: str, dmp: Mapping, overwrite: bool=True) -> None:
        """
        save a DMP document into the given DMP project
        """
        content = json.dumps(dmp, indent=2, ensure_ascii=False)
        await self.write_file(project_id, self.dmp_file_path, content, overwrite)
