"""
The many-to-many association between file-tree nodes and the DMP's data records.

The association is held as a mapping from a data record's ID to a tuple of
:py:class:`LinkingFile` snapshots.  The module-level functions operate on such mappings
without modifying them, returning a new mapping in which only the affected entries have
been replaced.  :py:class:`AssociationIndex` keeps the current mapping and applies those
functions to it.
"""
import logging
from collections import namedtuple, OrderedDict
from collections.abc import Mapping
from types import MappingProxyType
from typing import Iterable, List, Set, Tuple

from dmpeditor.base import DMPEditorException
from dmpeditor.filetree import TreeNode, FILE, FOLDER

__all__ = [ "LinkingFile", "SubtreeNotFetched", "AssociationIndex", "link_file", "link_files",
            "unlink_node", "unlink_nodes", "would_affect_records", "cascade_unlink_project",
            "link_counts" ]

deflogger = logging.getLogger(__name__)

_lf_fields = ("project_id node_id label type size path created modified last_touched "
              "md5 sha256 download_link")

# json keys used by LinkingFile.to_json()
_json_keys = OrderedDict([
    ("project_id", "projectId"), ("node_id", "nodeId"), ("label", "label"), ("type", "type"),
    ("size", "size"), ("path", "path"), ("created", "dateCreated"), ("modified", "dateModified"),
    ("last_touched", "lastTouched"), ("md5", "hashMd5"), ("sha256", "hashSha256"),
    ("download_link", "link")
])

class LinkingFile(namedtuple("LinkingFile", _lf_fields)):
    """
    a snapshot of the identifying attributes of a file or folder, taken when it was linked
    to a data record.  The snapshot is not updated if the remote file changes afterward.
    """
    __slots__ = ()

    @classmethod
    def from_node(cls, node: TreeNode):
        """
        capture a snapshot of a file or folder node
        """
        if node.type not in (FILE, FOLDER):
            raise ValueError(f"{node.node_id}: only files and folders can be linked (got {node.type})")
        r = node.remote
        if r is None:
            return cls(node.project_id, node.node_id, node.label, node.type,
                       None, None, None, None, None, None, None, None)
        return cls(node.project_id, node.node_id, node.label, node.type, r.size, r.path,
                   r.created, r.modified, r.last_touched, r.md5, r.sha256, r.download_link)

    def to_json(self) -> Mapping:
        return OrderedDict((_json_keys[f], getattr(self, f)) for f in self._fields)

    @classmethod
    def from_json(cls, data: Mapping):
        return cls(*[data.get(_json_keys[f]) for f in cls._fields])

class SubtreeNotFetched(DMPEditorException):
    """
    an error indicating that a folder's subtree cannot be linked because not all of its
    folders have been fetched yet
    """
    def __init__(self, node_id: str=None, message: str=None):
        if not message:
            message = "Folder contents not fully fetched"
            if node_id:
                message += ": " + node_id
        super(SubtreeNotFetched, self).__init__(message)
        self.node_id = node_id

def _replace_entry(links: Mapping, record_id: str, files: Tuple[LinkingFile]) -> dict:
    out = dict(links)
    out[record_id] = tuple(files)
    return out

def link_files(links: Mapping, record_id: str, lfiles: Iterable[LinkingFile]) -> dict:
    """
    add LinkingFiles to a record's set, skipping any whose node ID is already there
    """
    current = tuple(links.get(record_id, ()))
    have = set(f.node_id for f in current)
    added = []
    for lf in lfiles:
        if lf.node_id not in have:
            have.add(lf.node_id)
            added.append(lf)
    if not added and record_id in links:
        return dict(links)
    return _replace_entry(links, record_id, current + tuple(added))

def link_file(links: Mapping, record_id: str, lfile: LinkingFile) -> dict:
    """
    add a LinkingFile to a record's set unless that node is already linked to the record
    """
    return link_files(links, record_id, [lfile])

def unlink_nodes(links: Mapping, record_id: str, node_ids: Iterable[str]) -> dict:
    """
    remove from a record's set the LinkingFiles for any of the given nodes
    """
    if record_id not in links:
        return dict(links)
    drop = set(node_ids)
    current = links[record_id]
    kept = tuple(f for f in current if f.node_id not in drop)
    if len(kept) == len(current):
        return dict(links)
    return _replace_entry(links, record_id, kept)

def unlink_node(links: Mapping, record_id: str, node_id: str) -> dict:
    """
    remove the LinkingFile for the given node from a record's set
    """
    return unlink_nodes(links, record_id, [node_id])

def would_affect_records(links: Mapping, project_id: str) -> Set[str]:
    """
    return the IDs of the records that link to at least one node from the given project
    """
    return set(rid for rid, files in links.items()
                   if any(f.project_id == project_id for f in files))

def cascade_unlink_project(links: Mapping, project_id: str) -> dict:
    """
    remove every LinkingFile, across all records, that refers to the given project
    """
    out = dict(links)
    for rid in would_affect_records(links, project_id):
        out[rid] = tuple(f for f in links[rid] if f.project_id != project_id)
    return out

def link_counts(links: Mapping) -> Mapping[str, int]:
    """
    return the number of records each linked node is linked to, keyed by node ID
    """
    counts = {}
    for files in links.values():
        for f in files:
            counts[f.node_id] = counts.get(f.node_id, 0) + 1
    return counts


class AssociationIndex:
    """
    the set of links between file-tree nodes and data records.

    Each change replaces the affected record's whole entry, and the :py:attr:`links` view
    returned before a change does not reflect it.
    """

    def __init__(self, links: Mapping=None, logger: logging.Logger=None):
        self._links = dict((rid, tuple(files)) for rid, files in (links or {}).items())
        self.log = logger or deflogger

    @property
    def links(self) -> Mapping[str, Tuple[LinkingFile]]:
        """
        a read-only view of the current association, mapping record IDs to their linked files
        """
        return MappingProxyType(self._links)

    def get_linked_files(self, record_id: str) -> Tuple[LinkingFile]:
        return self._links.get(record_id, ())

    def records_for(self, node_id: str) -> List[str]:
        """
        return the IDs of the records the given node is linked to
        """
        return [rid for rid, files in self._links.items()
                    if any(f.node_id == node_id for f in files)]

    def link_counts(self) -> Mapping[str, int]:
        return link_counts(self._links)

    def would_affect_records(self, project_id: str) -> Set[str]:
        """
        return the IDs of the records that would lose links if the given project were
        unlinked from the DMP
        """
        return would_affect_records(self._links, project_id)

    def link_file(self, record_id: str, node: TreeNode) -> None:
        """
        link a single file or folder to a record.  Linking a node that is already linked
        to the record has no effect.
        """
        self._links = link_file(self._links, record_id, LinkingFile.from_node(node))

    def link_folder(self, record_id: str, folder_id: str, tree) -> int:
        """
        link a folder and everything under it to a record.  The folder's subtree must be
        completely fetched (see :py:meth:`~dmpeditor.filetree.LazyFileTree.expand_all_under`).

        :param str record_id:  the ID of the record to link to
        :param str folder_id:  the node ID of the folder
        :param LazyFileTree tree:  the file tree containing the folder
        :return:  the number of newly linked nodes
        :raises SubtreeNotFetched:  if any folder in the subtree has not been fetched
        """
        if not tree.is_fully_fetched(folder_id):
            raise SubtreeNotFetched(folder_id)
        before = len(self.get_linked_files(record_id))
        self._links = link_files(self._links, record_id,
                                 [LinkingFile.from_node(n) for n in tree.flatten(folder_id)])
        added = len(self.get_linked_files(record_id)) - before
        self.log.debug("Linked %d node(s) under %s to %s", added, folder_id, record_id)
        return added

    def unlink_node(self, record_id: str, node_id: str) -> None:
        self._links = unlink_node(self._links, record_id, node_id)

    def unlink_subtree(self, record_id: str, folder_id: str, tree) -> None:
        """
        unlink a folder and all of the nodes currently cached beneath it from a record
        """
        self._links = unlink_nodes(self._links, record_id,
                                   [n.node_id for n in tree.flatten(folder_id)])

    def cascade_unlink_project(self, project_id: str) -> Set[str]:
        """
        remove all links to nodes in the given project from all records

        :return:  the IDs of the records that lost links
        """
        affected = self.would_affect_records(project_id)
        if affected:
            self._links = cascade_unlink_project(self._links, project_id)
            self.log.info("Removed links to project %s from %d record(s)", project_id, len(affected))
        return affected

    def remove_record(self, record_id: str) -> None:
        """
        forget all links belonging to a record that has been deleted
        """
        if record_id in self._links:
            links = dict(self._links)
            del links[record_id]
            self._links = links

    def to_data(self) -> Mapping:
        """
        return the association as JSON-ready data: record IDs mapped to lists of linked-file
        objects
        """
        return OrderedDict((rid, [f.to_json() for f in files]) for rid, files in self._links.items())

    @classmethod
    def from_data(cls, data: Mapping, logger: logging.Logger=None):
        """
        restore an index from data produced by :py:meth:`to_data`
        """
        return cls(dict((rid, [LinkingFile.from_json(f) for f in files])
                        for rid, files in data.items()), logger)
