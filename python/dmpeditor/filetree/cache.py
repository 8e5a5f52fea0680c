"""
An in-memory, lazily expanded mirror of the file hierarchies of the GRDM projects linked
to a DMP.

The tree is held as an arena: a dictionary of immutable :py:class:`TreeNode` records keyed
by node ID, where each record refers to its parent and children by ID.  Any change to a
node is made by writing a replacement record, so a consumer holding an old record never
sees it change underneath it.  Consumers should hold on to node IDs, not records.

A project or folder that has not been fetched yet has exactly one ``loading`` placeholder
child.  Expanding it fetches one level of its contents; if that fails, the placeholder is
replaced by a single ``error`` placeholder, which the consumer can :py:meth:`retry
<LazyFileTree.retry>`.  Failures never propagate out of the tree: a failed subtree does not
disturb its siblings.
"""
import asyncio, functools, logging, uuid
from collections import namedtuple
from collections.abc import Mapping
from typing import Iterable, List, Callable

from dmpeditor.base import DMPEditorException

deflogger = logging.getLogger(__name__)

PROJECT = "project"
FOLDER = "folder"
FILE = "file"
LOADING = "loading"
ERROR = "error"
PLACEHOLDER_TYPES = (LOADING, ERROR)
EXPANDABLE_TYPES = (PROJECT, FOLDER)

# node states reported by LazyFileTree.state()
UNFETCHED = "unfetched"
FETCHING = "fetching"
FETCHED = "fetched"
ERRORED = "errored"

LOADING_LABEL = "Loading..."
ERROR_LABEL = "Failed to load"

class TreeNode(namedtuple("TreeNode", "project_id node_id label type children parent remote")):
    """
    a node in the file tree.

    ``children`` is a tuple of child node IDs and ``parent`` the ID of the parent node (None
    for a project node).  ``remote`` holds the :py:class:`~dmpeditor.grdm.models.RemoteNode`
    a file or folder node was created from, the :py:class:`~dmpeditor.grdm.models.ProjectInfo`
    of a project node, and None for placeholders.
    """
    __slots__ = ()

    @property
    def is_placeholder(self) -> bool:
        return self.type in PLACEHOLDER_TYPES

class TreeNodeNotFound(DMPEditorException):
    """
    an error indicating that a requested node is not (or is no longer) in the tree
    """
    def __init__(self, node_id: str=None, message: str=None):
        if not message:
            message = "Node not found in file tree"
            if node_id:
                message += ": " + node_id
        super(TreeNodeNotFound, self).__init__(message)
        self.node_id = node_id


class LazyFileTree:
    """
    the tree of files in the GRDM projects linked to a DMP, fetched one folder level at a
    time as it is expanded.

    All operations must be called from the same event loop.  At most one fetch per node is
    outstanding at any time; a request to expand a node that is already being fetched
    simply waits for that fetch to finish.
    """

    def __init__(self, lister, index=None, logger: logging.Logger=None):
        """
        create an empty tree

        :param lister:  the source of folder contents; it must provide a coroutine method,
                        ``list_children(project_id, folder_id)``, that returns the
                        :py:class:`~dmpeditor.grdm.models.RemoteNode` items in a folder (or in
                        the project's root folder when ``folder_id`` is None).  A
                        :py:class:`~dmpeditor.grdm.client.GRDMClient` serves.
        :param index:   an :py:class:`~dmpeditor.linking.AssociationIndex` whose entries should
                        be removed when a project is removed from the tree
        :param logger:  the Logger to send messages to
        """
        self.lister = lister
        self.index = index
        self.log = logger or deflogger
        self._nodes = {}
        self._roots = ()
        self._inflight = {}
        self._failures = {}
        self._listeners = []

    # ---- queries

    def __contains__(self, node_id: str) -> bool:
        return node_id in self._nodes

    def get(self, node_id: str) -> TreeNode:
        """
        return the current record for the node with the given ID

        :raises TreeNodeNotFound:  if no such node is in the tree
        """
        try:
            return self._nodes[node_id]
        except KeyError:
            raise TreeNodeNotFound(node_id)

    @property
    def project_ids(self) -> List[str]:
        return list(self._roots)

    def roots(self) -> List[TreeNode]:
        """
        return the project nodes at the top of the tree, in order
        """
        return [self._nodes[pid] for pid in self._roots]

    def children(self, node_id: str) -> List[TreeNode]:
        """
        return the current children of a node, in order
        """
        return [self._nodes[c] for c in self.get(node_id).children]

    def is_fetching(self, node_id: str) -> bool:
        return node_id in self._inflight

    def is_fetched(self, node_id: str) -> bool:
        """
        return True if the contents of the given node have been retrieved.  A node is
        fetched unless its children are exactly one ``loading`` or ``error`` placeholder.
        """
        node = self.get(node_id)
        if len(node.children) != 1:
            return True
        return self._nodes[node.children[0]].type not in PLACEHOLDER_TYPES

    def state(self, node_id: str) -> str:
        """
        return the fetch state of a node: one of "unfetched", "fetching", "fetched", or
        "errored".  Files and placeholders are always reported as "fetched".
        """
        node = self.get(node_id)
        if node.type not in EXPANDABLE_TYPES:
            return FETCHED
        if node_id in self._inflight:
            return FETCHING
        if self.is_fetched(node_id):
            return FETCHED
        if self._nodes[node.children[0]].type == ERROR:
            return ERRORED
        return UNFETCHED

    def failure(self, node_id: str) -> Exception:
        """
        return the exception that caused the last fetch of the given node to fail, or None
        if the node is not in the errored state.  ``node_id`` may identify either the node
        that was being expanded or its ``error`` placeholder.
        """
        node = self.get(node_id)
        if node.type == ERROR:
            node_id = node.parent
        if self.state(node_id) != ERRORED:
            return None
        return self._failures.get(node_id)

    def flatten(self, node_id: str) -> List[TreeNode]:
        """
        return the file and folder nodes in the subtree rooted at the given node (including
        the node itself if it is a file or folder), depth-first in tree order.
        Placeholders and project nodes are not included.
        """
        out = []
        stack = [node_id]
        while stack:
            node = self.get(stack.pop())
            if node.type in (FILE, FOLDER):
                out.append(node)
            stack.extend(reversed(node.children))
        return out

    def is_fully_fetched(self, node_id: str) -> bool:
        """
        return True if every project or folder in the subtree rooted at the given node has
        been fetched
        """
        stack = [node_id]
        while stack:
            node = self.get(stack.pop())
            if node.type in EXPANDABLE_TYPES:
                if node.node_id in self._inflight or not self.is_fetched(node.node_id):
                    return False
                stack.extend(node.children)
        return True

    def snapshot(self, node_id: str=None) -> List[Mapping]:
        """
        return the current state of the tree (or of the subtree under the given node) as
        nested dictionaries suitable for rendering.  Each dictionary has the keys
        ``projectId``, ``nodeId``, ``label``, ``type``, ``state``, and ``children``.
        """
        ids = self._roots if node_id is None else [node_id]
        return [self._snapshot(self.get(i)) for i in ids]

    def _snapshot(self, node: TreeNode) -> Mapping:
        return {
            "projectId": node.project_id,
            "nodeId": node.node_id,
            "label": node.label,
            "type": node.type,
            "state": self.state(node.node_id),
            "children": [self._snapshot(self._nodes[c]) for c in node.children]
        }

    # ---- observation

    def subscribe(self, listener: Callable[[str], None]) -> Callable[[], None]:
        """
        register a function to be called with a node's ID each time that node's record is
        replaced, added, or removed.  The function returned will unregister the listener.
        """
        self._listeners.append(listener)
        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)
        return unsubscribe

    def _notify(self, node_id: str):
        for listener in list(self._listeners):
            try:
                listener(node_id)
            except Exception as ex:
                self.log.exception("File tree listener failed on %s: %s", node_id, str(ex))

    # ---- arena updates

    def _put(self, node: TreeNode):
        self._nodes[node.node_id] = node
        self._notify(node.node_id)

    def _new_placeholder(self, parent: TreeNode, ptype: str) -> TreeNode:
        label = ERROR_LABEL if ptype == ERROR else LOADING_LABEL
        return TreeNode(parent.project_id, f"{ptype}-{uuid.uuid4()}", label, ptype, (),
                        parent.node_id, None)

    def _drop(self, node_id: str):
        # remove a node and its descendants, cancelling any of their fetches
        stack = [node_id]
        while stack:
            node = self._nodes.pop(stack.pop(), None)
            if node is None:
                continue
            task = self._inflight.pop(node.node_id, None)
            if task:
                task.cancel()
            self._failures.pop(node.node_id, None)
            stack.extend(node.children)
            self._notify(node.node_id)

    def _set_children(self, parent: TreeNode, children: List[TreeNode]):
        for old in parent.children:
            self._drop(old)
        for child in children:
            self._put(child)
        self._put(parent._replace(children=tuple(c.node_id for c in children)))

    def _install_placeholder(self, node_id: str, ptype: str):
        node = self._nodes[node_id]
        self._set_children(node, [self._new_placeholder(node, ptype)])

    # ---- linked projects

    def set_linked_projects(self, project_ids: Iterable[str], projects: Iterable=()) -> List[str]:
        """
        make the tree's top level reflect the given list of linked projects.  Projects
        newly in the list are added in the unfetched state; projects already present keep
        their cached contents; projects no longer in the list are removed along with their
        contents and, if this tree has an association index, with all records' links to them.

        :param project_ids:  the IDs of the linked projects, in display order
        :param projects:     :py:class:`~dmpeditor.grdm.models.ProjectInfo` descriptions of
                             (at least) the linked projects; linked IDs without a description
                             here are left out of the tree
        :return:  the IDs of the projects that were removed
        """
        byid = dict((p.id, p) for p in projects)
        roots = []
        for pid in project_ids:
            if pid in roots:
                continue
            if pid in self._nodes and self._nodes[pid].type == PROJECT:
                roots.append(pid)
                continue
            project = byid.get(pid)
            if not project:
                self.log.debug("No description available for linked project %s; skipping", pid)
                continue
            node = TreeNode(pid, pid, project.title, PROJECT, (), None, project)
            placeholder = self._new_placeholder(node, LOADING)
            self._put(placeholder)
            self._put(node._replace(children=(placeholder.node_id,)))
            roots.append(pid)

        removed = [pid for pid in self._roots if pid not in roots]
        self._roots = tuple(roots)
        for pid in removed:
            self.log.debug("Removing project %s from file tree", pid)
            self._drop(pid)
            if self.index is not None:
                self.index.cascade_unlink_project(pid)
        return removed

    # ---- fetching

    async def expand(self, node_id: str) -> None:
        """
        ensure that the contents of the given project or folder node have been fetched.
        This does nothing if the node is already fetched; if a fetch is in progress, this
        waits for it to complete.  A failed fetch leaves the node in the errored state;
        it is not raised.

        :raises TreeNodeNotFound:  if the node is not in the tree
        """
        node = self.get(node_id)
        if node.type not in EXPANDABLE_TYPES:
            return

        task = self._inflight.get(node_id)
        if task is None:
            if self.is_fetched(node_id):
                return
            task = self._start_fetch(node)
        await self._wait_for(task)

    async def _wait_for(self, task: asyncio.Task):
        # the outcome of a fetch is recorded in the node's state rather than raised, and
        # the cancellation of a waiter does not cancel the shared fetch
        await asyncio.wait([task])

    def _start_fetch(self, node: TreeNode) -> asyncio.Task:
        if not self.is_fetched(node.node_id) and \
           self._nodes[node.children[0]].type == ERROR:
            self._install_placeholder(node.node_id, LOADING)
        self._failures.pop(node.node_id, None)

        folder_id = None if node.type == PROJECT else node.node_id
        self.log.debug("Fetching contents of %s", node.node_id)
        task = asyncio.get_running_loop().create_task(
            self.lister.list_children(node.project_id, folder_id))
        self._inflight[node.node_id] = task
        task.add_done_callback(functools.partial(self._fetch_done, node.node_id))
        self._notify(node.node_id)
        return task

    def _fetch_done(self, node_id: str, task: asyncio.Task):
        if self._inflight.get(node_id) is not task:
            # the node was removed (or re-fetched) while this fetch was outstanding
            self.log.debug("Discarding stale result of fetch for %s", node_id)
            if not task.cancelled():
                task.exception()
            return
        del self._inflight[node_id]

        if task.cancelled():
            self.log.warning("Fetch of %s was cancelled", node_id)
            self._failures[node_id] = asyncio.CancelledError()
            self._install_placeholder(node_id, ERROR)
        elif task.exception() is not None:
            ex = task.exception()
            self.log.warning("Failed to fetch contents of %s: %s", node_id, str(ex))
            self._failures[node_id] = ex
            self._install_placeholder(node_id, ERROR)
        else:
            self._install_children(node_id, task.result())
        self._notify(node_id)

    def _install_children(self, node_id: str, remotes: list):
        parent = self._nodes[node_id]
        children = []
        for remote in remotes:
            child = TreeNode(parent.project_id, remote.id,
                             remote.name or _basename(remote.path) or remote.id,
                             FOLDER if remote.is_folder else FILE, (), node_id, remote)
            if remote.is_folder:
                placeholder = self._new_placeholder(child, LOADING)
                self._put(placeholder)
                child = child._replace(children=(placeholder.node_id,))
            children.append(child)
        self._set_children(parent, children)
        self.log.debug("Installed %d child%s under %s", len(children),
                       "ren" if len(children) != 1 else "", node_id)

    async def expand_all_under(self, node_id: str) -> bool:
        """
        fetch every folder in the subtree rooted at the given node.  Sibling subtrees are
        fetched concurrently.

        :return:  True if the whole subtree was fetched, False if any part of it failed
                  (the failed folders are left in the errored state)
        """
        try:
            await self.expand(node_id)
            node = self.get(node_id)
        except TreeNodeNotFound:
            return False
        if node.type not in EXPANDABLE_TYPES:
            return True
        if not self.is_fetched(node_id):
            return False

        subfolders = [c for c in node.children
                        if c in self._nodes and self._nodes[c].type == FOLDER]
        results = await asyncio.gather(*[self.expand_all_under(c) for c in subfolders])
        return all(results)

    async def retry(self, error_node_id: str) -> None:
        """
        re-attempt the failed fetch that produced the given ``error`` placeholder
        """
        node = self.get(error_node_id)
        if node.type != ERROR:
            raise ValueError(f"{error_node_id}: not an error placeholder")
        await self.expand(node.parent)

    async def refresh(self, node_id: str) -> None:
        """
        discard the cached contents of the given project or folder and fetch them again.
        This is the only way changes made on the remote side are picked up.
        """
        node = self.get(node_id)
        if node.type not in EXPANDABLE_TYPES:
            return
        task = self._inflight.get(node_id)
        if task is not None:
            await self._wait_for(task)
            return
        self._install_placeholder(node_id, LOADING)
        await self.expand(node_id)

    def cancel(self, node_id: str) -> bool:
        """
        cancel the in-progress fetch of the given node, leaving it in the errored state

        :return:  True if a fetch was cancelled
        """
        task = self._inflight.get(node_id)
        if task is None:
            return False
        task.cancel()
        return True

    async def aclose(self):
        """
        cancel all in-progress fetches and wait for them to finish
        """
        tasks = list(self._inflight.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

def _basename(path: str) -> str:
    if not path:
        return None
    parts = path.strip('/').split('/')
    return parts[-1] if parts else None
