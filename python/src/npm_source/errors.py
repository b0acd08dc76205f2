"""
npm-source Errors

Exception hierarchy raised by the registry client, the extraction pipeline
and the package manager facade.
"""


class PackageSourceError(Exception):
    """Base error for package retrieval, extraction and inspection."""


class InvalidParamsError(PackageSourceError):
    """Caller input is missing or malformed. Raised before any I/O."""


class NotFoundError(PackageSourceError):
    """Requested package, version or file does not exist."""


class NotAFileError(PackageSourceError):
    """Requested path exists but is not a regular file."""


class NetworkError(PackageSourceError):
    """Transport failure or unexpected HTTP status."""


class RequestTimeoutError(NetworkError):
    """A network stage exceeded its deadline."""


class DownloadError(NetworkError):
    """Downloading a package archive failed."""


class DecodeError(PackageSourceError):
    """A response body or archive stream could not be decoded."""


class InvalidResponseError(DecodeError):
    """Registry returned an unparsable or incomplete JSON body."""


class DecompressError(DecodeError):
    """The archive's compressed stream is malformed or truncated."""


class ExtractError(DecodeError):
    """The archive contains malformed or unsafe entries."""


class FilesystemError(PackageSourceError):
    """Local read, stat or write failure."""


class ReadError(FilesystemError):
    """A file could not be read as text."""


class OperationFailedError(PackageSourceError):
    """Opaque failure of a caller-facing operation, chained to its cause."""
