"""
a lazily fetched, in-memory cache of the file hierarchies of the GRDM projects linked to a
DMP.  See :py:class:`~dmpeditor.filetree.cache.LazyFileTree`.
"""
from .cache import (TreeNode, TreeNodeNotFound, LazyFileTree,
                    PROJECT, FOLDER, FILE, LOADING, ERROR, PLACEHOLDER_TYPES,
                    UNFETCHED, FETCHING, FETCHED, ERRORED)
