"""
Immutable records describing the entities returned by the GRDM API: users, projects, and
the files and folders stored in a project.  Each record type can be built from the
(already validated) JSON:API ``data`` item that describes it.
"""
import re
from collections import namedtuple
from collections.abc import Mapping
from urllib.parse import urlsplit

FILE = "file"
FOLDER = "folder"

# GRDM issues short public links of the form https://<host>/download/<5-char guid>/ only for
# files whose storage backend supports them; every other "download" link points into the
# internal file-access API.  This matches the service's current link format, not a
# documented contract.
_public_download_re = re.compile(r'^/download/[A-Za-z0-9]{5}/?$')

def public_download_link(url: str):
    """
    return the given URL if it looks like a short public download link, or None otherwise
    """
    if not url:
        return None
    if _public_download_re.match(urlsplit(url).path):
        return url
    return None

def _get(data: Mapping, *steps, default=None):
    for step in steps:
        if not isinstance(data, Mapping):
            return default
        data = data.get(step)
    return default if data is None else data


_remote_node_fields = [ "id", "name", "kind", "size", "path", "created", "modified",
                        "last_touched", "md5", "sha256", "download_link",
                        "children_url", "upload_url", "new_folder_url", "content_url" ]

class RemoteNode(namedtuple("RemoteNode", _remote_node_fields)):
    """
    a file or folder in a project's storage.

    ``path`` is the human-readable (materialized) path, e.g. ``/a/b/``.  ``download_link``
    is set only for files with a short public link.  The ``*_url`` properties are the API
    links used to operate on the node: ``children_url`` lists a folder's contents,
    ``upload_url`` receives file content, ``new_folder_url`` creates subfolders, and
    ``content_url`` returns a file's bytes.
    """
    __slots__ = ()

    @property
    def is_folder(self) -> bool:
        return self.kind == FOLDER

    @classmethod
    def from_json(cls, item: Mapping):
        """
        create a RemoteNode from a ``files`` entity from a GRDM listing
        """
        attrs = item.get('attributes', {})
        links = item.get('links', {})
        kind = attrs.get('kind')
        return cls(
            id=item['id'],
            name=attrs.get('name'),
            kind=kind,
            size=attrs.get('size'),
            path=attrs.get('materialized_path') or attrs.get('path'),
            created=attrs.get('date_created'),
            modified=attrs.get('date_modified'),
            last_touched=attrs.get('last_touched'),
            md5=_get(attrs, 'extra', 'hashes', 'md5'),
            sha256=_get(attrs, 'extra', 'hashes', 'sha256'),
            download_link=public_download_link(links.get('download')) if kind == FILE else None,
            children_url=_get(item, 'relationships', 'files', 'links', 'related', 'href')
                         if kind == FOLDER else None,
            upload_url=links.get('upload'),
            new_folder_url=links.get('new_folder'),
            content_url=links.get('download')
        )


class ProjectInfo(namedtuple("ProjectInfo", "id title description category created modified "
                                            "html self_url")):
    """
    a description of a GRDM project
    """
    __slots__ = ()

    @classmethod
    def from_json(cls, item: Mapping):
        attrs = item['attributes']
        return cls(
            id=item['id'],
            title=attrs['title'],
            description=attrs.get('description') or "",
            category=attrs.get('category'),
            created=attrs.get('date_created'),
            modified=attrs.get('date_modified'),
            html=item['links'].get('html'),
            self_url=item['links'].get('self')
        )


class User(namedtuple("User", "id full_name given_name family_name orcid researcher_id "
                              "affiliation timezone email profile_url profile_image")):
    """
    the GRDM user that the access token belongs to
    """
    __slots__ = ()

    @classmethod
    def from_json(cls, item: Mapping):
        attrs = item['attributes']
        employment = attrs.get('employment') or [{}]
        institution = employment[0].get('institution_ja') or employment[0].get('institution')
        department = employment[0].get('department_ja') or employment[0].get('department')
        affiliation = f"{institution or ''} {department or ''}".strip() or None
        social = attrs.get('social') or {}

        return cls(
            id=item['id'],
            full_name=attrs['full_name'],
            given_name=attrs.get('given_name') or "",
            family_name=attrs.get('family_name') or "",
            orcid=social.get('orcid') or None,
            researcher_id=social.get('researcherId') or None,
            affiliation=affiliation,
            timezone=attrs['timezone'],
            email=attrs['email'],
            profile_url=item['links'].get('html'),
            profile_image=item['links']['profile_image']
        )
