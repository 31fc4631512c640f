"""
Exceptions raised while streaming a zip archive.

Anything raised after the first byte of a file reached the sink leaves the
writer unusable: the output cannot be rewound, so the partial archive has to
be discarded by the caller.
"""


class ZipFlowError(Exception):
    """Base class for all zipflow errors."""

    pass


class InvalidFilenameError(ZipFlowError, ValueError):
    """Raised when a name cannot be used as a zip entry path.

    Checked before anything is written, so the writer stays usable and the
    call can be repeated with a corrected name.
    """

    pass


class InvalidStateError(ZipFlowError, RuntimeError):
    """Raised on protocol violations.

    This exception is raised when:
    - a file is added after the archive was finalized
    - the archive is finalized twice
    - the writer is used after an earlier failure
    """

    pass


class ContentReadError(ZipFlowError):
    """Raised when a file content source fails or yields something other
    than bytes."""

    pass


class CompressionError(ZipFlowError):
    """Raised when the deflate compressor fails."""

    pass


class SinkWriteError(ZipFlowError, IOError):
    """Raised when the output sink refuses a write or fails to close."""

    pass


class ZipLimitError(ZipFlowError, OverflowError):
    """Raised when the archive would need zip64 structures."""

    pass
