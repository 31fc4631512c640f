from .zipstream import ZipWriter, ZipStream
from .aiozipstream import AioZipWriter, AioZipStream
from .errors import (ZipFlowError, InvalidFilenameError, InvalidStateError,
                     ContentReadError, CompressionError, SinkWriteError,
                     ZipLimitError)

version = "0.1.0"
