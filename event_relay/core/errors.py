"""Error taxonomy for the scan pipeline and the broadcast path."""


class RelayError(Exception):
    """Base class for all relay errors."""


class ChainConnectionError(RelayError):
    """The chain client could not be established; aborts a whole scan batch."""


class QueryError(RelayError):
    """A single log filter call failed; only the issuing scanner is affected."""


class DecodeFailure(RelayError):
    """A raw log could not be turned into a typed event."""


class MalformedLog(DecodeFailure):
    """The log's topics do not match the shape its schema declares."""


class EncodingError(DecodeFailure):
    """The non-indexed data payload could not be ABI-decoded."""


class SerializationError(RelayError):
    """A scan result envelope could not be encoded for publishing."""
