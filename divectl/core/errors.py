"""Domain-specific errors for divectl."""


class DivectlError(Exception):
    """Base error for divectl."""


class ProfileValidationError(DivectlError):
    """Raised when a device profile does not conform to schema or semantics."""


class ProfileLoadError(DivectlError):
    """Raised when loading device profile sources fails."""


class DeviceSelectionError(DivectlError):
    """Raised when device matching cannot resolve a single target."""


class DeviceDiscoveryError(DivectlError):
    """Raised when the BLE scan itself fails."""


class StoreError(DivectlError):
    """Raised when the dive store cannot be read or written."""


class TransportError(DivectlError):
    """Base transport error. Fatal to the current run."""


class TransportConnectError(TransportError):
    """Raised on BLE connect or subscribe failures."""


class TransportSendError(TransportError):
    """Raised when writing to the device fails."""


class TransportTimeoutError(TransportError):
    """Raised when no notification arrives within the requested wait."""


class ProtocolError(DivectlError):
    """Base ECOP protocol error. Retryable per whole object read."""


class ProtocolTimeoutError(ProtocolError):
    """Raised when the device does not answer a command in time."""


class UnexpectedResponseError(ProtocolError):
    """Raised when a response status or toggle echo is not recognized."""


class MalformedFrameError(ProtocolError):
    """Raised when a start marker is not followed by an end marker in budget."""


class InvalidPayloadError(ProtocolError):
    """Raised when a command payload does not fit the command."""


class ObjectAbortedError(ProtocolError):
    """Raised when the device aborts an object read (object absent)."""

    def __init__(self, message: str, *, index: int, sub_index: int) -> None:
        super().__init__(message)
        self.index = index
        self.sub_index = sub_index


class DecodeError(DivectlError):
    """Base error for dive data that cannot be decoded. Never retried."""


class TruncatedDataError(DecodeError):
    """Raised when a buffer ends before a field or record does."""


class BadMagicError(DecodeError):
    """Raised when the dive header type field is not 1."""


class BadTimestampError(DecodeError):
    """Raised when the packed dive datetime holds out-of-range fields."""


class UnknownModeError(DecodeError):
    """Raised when the settings word holds an unmapped dive mode."""


class UnknownSalinityError(DecodeError):
    """Raised when the settings word holds an unmapped salinity."""


class UnknownTagError(DecodeError):
    """Raised when a profile record carries a tag with no known length."""


class TagMismatchError(DecodeError):
    """Raised when a record's trailing tag differs from its leading tag."""


class CrcMismatchError(DecodeError):
    """Raised in strict mode when a record checksum does not match."""

    def __init__(self, message: str, *, offset: int, tag: str) -> None:
        super().__init__(message)
        self.offset = offset
        self.tag = tag
