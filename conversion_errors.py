"""
conversion_errors.py

Failure taxonomy for image-to-icon conversion. Every failure is terminal for
the conversion in progress; callers report it and move on.
"""


class ConversionError(Exception):
    """Base class for a failed conversion."""

    @property
    def reason(self) -> str:
        return type(self).__name__


class DecodeError(ConversionError):
    """Input bytes are not a valid or supported source image."""


class EncodeError(ConversionError):
    """A resampled image could not be compressed into the payload format."""


class IoError(ConversionError):
    """Reading the input or writing the output failed."""
