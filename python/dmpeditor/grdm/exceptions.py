"""
Customized exceptions raised while interacting with the GRDM service
"""
from dmpeditor.base import DMPEditorException

__all__ = [ "GRDMException", "RetriesExhausted", "RemoteRequestFailed", "AuthenticationFailure",
            "MalformedResponse", "PathResolutionFailed", "WriteConflict" ]

class GRDMException(DMPEditorException):
    """
    an exception indicating a problem interacting with the GRDM service.

    This class serves as a base class for all exceptions raised by the GRDM client.
    """

    def __init__(self, message: str=None, url: str=None, cause: Exception=None):
        if not message:
            message = "Unspecified problem accessing GRDM"
            if url:
                message += f" at {url}"
        super(GRDMException, self).__init__(message, cause)
        self.url = url


class RetriesExhausted(GRDMException):
    """
    an error indicating that a request kept failing for transient reasons--network failures,
    timeouts, or rate limiting (HTTP 429)--until the transport's retry budget ran out.
    """

    def __init__(self, url: str=None, attempts: int=0, rate_limited: bool=False,
                 message: str=None, cause: Exception=None):
        """
        create the exception

        :param str           url:  the URL that was being accessed
        :param int      attempts:  the number of attempts that were made
        :param bool rate_limited:  True if the last failure was a 429 response
        :param str       message:  an explanation of the cause of the error
        :param Exception   cause:  the last transient failure encountered
        """
        if not message:
            if rate_limited:
                message = "Too many requests (429): rate limited, retries exhausted"
            else:
                message = "Request failed, retries exhausted"
            if attempts:
                message += f" after {attempts} attempts"
            if url:
                message += f" ({url})"
            if cause:
                message += f": {str(cause)}"
        super(RetriesExhausted, self).__init__(message, url, cause)
        self.attempts = attempts
        self.rate_limited = rate_limited


class RemoteRequestFailed(GRDMException):
    """
    an error indicating that the GRDM service responded with a non-2xx status (other than the
    429 handled by the transport).  These are not retried.
    """

    def __init__(self, status: int=0, url: str=None, reason: str=None, resptext: str=None,
                 message: str=None, cause: Exception=None):
        """
        create the exception

        :param int   status:  the HTTP status code returned by the service
        :param str      url:  the URL that was being accessed
        :param str   reason:  the HTTP reason phrase that accompanied the status
        :param str resptext:  the body of the erroneous response, as text
        :param str  message:  an explanation of the cause of the error
        """
        if not message:
            message = f"HTTP error with status code {status}"
            if reason:
                message += f" ({reason})"
            if url:
                message += f" while accessing {url}"
        super(RemoteRequestFailed, self).__init__(message, url, cause)
        self.status = status
        self.reason = reason
        self.response = resptext


class AuthenticationFailure(RemoteRequestFailed):
    """
    an error indicating that the bearer credential was rejected (HTTP 401 or 403)
    """

    def __init__(self, status: int=401, url: str=None, reason: str=None, resptext: str=None,
                 message: str=None):
        if not message:
            message = "GRDM did not accept the access token"
            if status:
                message += f" ({status})"
        super(AuthenticationFailure, self).__init__(status, url, reason, resptext, message)


class MalformedResponse(GRDMException):
    """
    an error indicating that the GRDM service returned content that could not be parsed or
    that does not match the expected schema.  The status code may indicate success.
    """

    def __init__(self, message: str=None, url: str=None, resptext: str=None, cause: Exception=None):
        if not message:
            message = "Unexpected content returned from GRDM"
            if url:
                message += f" while accessing {url}"
            if cause:
                message += f": {str(cause)}"
        super(MalformedResponse, self).__init__(message, url, cause)
        self.response = resptext


class PathResolutionFailed(GRDMException):
    """
    an error indicating that a slash-delimited path could not be resolved to a node in a
    project's storage: a segment was not found, a file was found where a folder was needed,
    or a missing folder could not be created.
    """

    def __init__(self, reason: str, path: str=None, message: str=None, cause: Exception=None):
        """
        create the exception

        :param str  reason:  a short description of why resolution failed
        :param str    path:  the (possibly partial) path where resolution stopped
        :param str message:  a full explanation; if not given, one is built from reason and path
        """
        if not message:
            message = reason
            if path is not None:
                message += f": {path}"
        super(PathResolutionFailed, self).__init__(message, None, cause)
        self.reason = reason
        self.path = path


class WriteConflict(GRDMException):
    """
    an error indicating that a write would replace an existing item while overwriting is
    disabled.
    """

    def __init__(self, path: str=None, message: str=None):
        if not message:
            message = "exists and overwrite disabled"
            if path:
                message = f"{path}: {message}"
        super(WriteConflict, self).__init__(message)
        self.path = path
