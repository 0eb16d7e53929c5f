# errors.py
class FlashToolError(Exception):
    """Base class for everything the tool raises on purpose."""


class FormatError(FlashToolError, ValueError):
    """Bad magic or a header that cannot be what it claims to be."""


class BoundsError(FormatError):
    """A field or transfer would reach past the end of its buffer/region."""


class TransportError(FlashToolError, RuntimeError):
    """The link to the chip failed. Never retried here."""
