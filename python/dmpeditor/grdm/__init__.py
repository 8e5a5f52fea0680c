"""
support for interacting with a GakuNin RDM (GRDM) service, the storage service where DMP
projects and the research data they describe are kept.

This package includes the following components, listed from the network up:

:py:mod:`transport`
    :py:class:`~transport.ResilientTransport`, which executes every outbound HTTP request
    with a per-attempt timeout and a fixed-delay retry policy for rate limiting (429) and
    network failures.
:py:mod:`pager`
    :py:class:`~pager.PageFetcher`, which drains a cursor-paginated JSON:API listing into a
    single ordered list, validating every page.
:py:mod:`paths`
    :py:class:`~paths.PathResolver`, which walks slash-delimited paths through a project's
    storage one folder listing at a time, creating folders and uploading files on request.
:py:mod:`client`
    :py:class:`~client.GRDMClient`, the entry point used by applications: user and project
    queries, one-level folder listings, and file reads and writes.
:py:mod:`cli`
    the ``grdmtree`` command-line interface.

GRDM API Model
==============

GRDM exposes an OSF-derived JSON:API (v2).  Projects are "nodes"; each project has one or
more storage providers (this client uses ``osfstorage`` by default).  A listing request
only ever returns one level of a folder hierarchy; a folder entry carries the URL of its
own listing under ``relationships.files.links.related.href`` along with ``upload`` and
``new_folder`` links used to add content to it.  Listings are paginated: each page links
to the next one via ``links.next``.  All authenticated calls carry an
``Authorization: Bearer`` header whose token is supplied by the application.
"""
import os

from .exceptions import *

PROD_API_BASE_URL = "https://api.rdm.nii.ac.jp/v2"
PROD_WEB_BASE_URL = "https://rdm.nii.ac.jp"
DEV_API_BASE_URL = "https://api.rcos.rdm.nii.ac.jp/v2"
DEV_WEB_BASE_URL = "https://rcos.rdm.nii.ac.jp"

DEV_ENV_VAR = "DMPEDITOR_USE_GRDM_DEV_ENV"

DEF_STORAGE_PROVIDER = "osfstorage"
DMP_PROJECT_PREFIX = "dmp-project-"
DEF_DMP_FILE_PATH = "dmp-project-root/dmp.json"

def use_dev_env() -> bool:
    """
    return True if the environment requests that the GRDM development instance be used
    """
    return os.environ.get(DEV_ENV_VAR, "").strip().lower() == "true"

def token_settings_url(web_base_url: str=None) -> str:
    """
    return the URL of the GRDM page where users create personal access tokens
    """
    if not web_base_url:
        web_base_url = DEV_WEB_BASE_URL if use_dev_env() else PROD_WEB_BASE_URL
    return web_base_url.rstrip('/') + "/settings/tokens"
