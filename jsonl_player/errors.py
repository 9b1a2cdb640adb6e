from typing import Optional


class PlayerError(Exception):
    """Base class for everything the pipeline raises on purpose."""


class UnitError(PlayerError):
    """A failure scoped to one input line or one fragment.

    These are always recovered by the stage that owns the unit: logged,
    counted and the unit discarded.
    """

    def __init__(self, message: str, ordinal: Optional[int] = None):
        super().__init__(message)
        self.ordinal = ordinal

    def __str__(self) -> str:
        msg = super().__str__()
        if self.ordinal is None:
            return msg
        return f"{msg} (#{self.ordinal})"


class MalformedEnvelope(UnitError):
    """Line is not a JSON object with a string ``data`` field."""


class InvalidEncoding(UnitError):
    """``data`` is not valid standard base64."""


class DecompressionFailure(UnitError):
    """Decoded bytes are not a complete gzip stream."""


class ContainerCaptureFailure(UnitError):
    """No RIFF/WAVE header with a ``data`` sub-chunk in the first fragment."""


class DecodeFailure(UnitError):
    """The codec rejected a fragment's bytes."""


class TransportClosed(PlayerError):
    """The consumer side of the transport has gone away."""


class SinkError(PlayerError):
    """The audio output could not be opened. Fatal."""
