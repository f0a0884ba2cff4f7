"""
Error types raised by the decoder.

Configuration errors and stream desynchronization are fatal and abort the
run. ``LengthLimitExceeded`` is recoverable: the driver logs it and moves on
to the next sentence.
"""


class NMTDecodeError(Exception):
    """Base class for all decoder errors."""


class ConfigurationError(NMTDecodeError, ValueError):
    """Bad model tag, missing file, vocabulary mismatch or invalid setting."""


class UnsupportedOperationError(ConfigurationError):
    """Operation name is reserved but not implemented (e.g. ``samp``)."""


class StreamMismatchError(NMTDecodeError, RuntimeError):
    """Paired source/target streams do not have matching line counts."""


class InvalidStateError(NMTDecodeError, RuntimeError):
    """A scorer or attention context was used before being bound to a sentence."""


class LengthLimitExceeded(NMTDecodeError):
    """A sentence is longer than the configured size limit.

    Args:
        length: Length of the offending sentence.
        limit: Configured size limit.
    """

    def __init__(self, length: int, limit: int):
        super().__init__(f"Sentence length {length} exceeds size limit {limit}")
        self.length = length
        self.limit = limit
