"""
Global resumable_multipart exception classes.

Failures raised inside an upload chain are reported through the event
notifier; these types let observers and transfers tell them apart.
"""


class ResumableUploadError(Exception):
    """Base class for errors raised by resumable_multipart."""


class TokenRequestError(ResumableUploadError):
    """
    Exception raised when the token endpoint behaves unexpectedly.

    Attributes:
        message (str): Main message of the exception
        status_code (int): HTTP status code of response indicating an error
        response_content (bytes): Content of response indicating an error
    """

    def __init__(self, message, status_code=None, response_content=None):
        default_message = f"Token request failed with status {status_code}"
        message = message or default_message
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.response_content = response_content


class TransferFailed(ResumableUploadError):
    """Exception raised when a multipart transfer cannot make progress."""

    pass


class UploadCancelled(ResumableUploadError):
    """Raised by a transfer that observed its own cancellation signal."""

    pass
