"""
Base classes and utilities shared by all of the dmpeditor subsystems.

The dmpeditor packages provide the client-side core of the DMP editor: access to a
GakuNin RDM (GRDM) storage service (:py:mod:`dmpeditor.grdm`), a lazily expanded view of
a project's file hierarchy (:py:mod:`dmpeditor.filetree`), and the association of tree
nodes with the research-data records of a DMP (:py:mod:`dmpeditor.linking`).
"""
try:
    from .version import __version__
except ImportError:
    __version__ = "(unset)"

class DMPEditorException(Exception):
    """
    a general base class for all exceptions raised by the dmpeditor packages
    """

    def __init__(self, message: str=None, cause: Exception=None):
        if not message:
            message = "Unspecified DMP editor failure"
            if cause:
                message += ": " + str(cause)
        super(DMPEditorException, self).__init__(message)
        self.cause = cause
