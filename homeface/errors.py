"""Error taxonomy shared by the identity engine and the resource cache.

Messages are shown to the user as-is, so keep them readable.
"""


class HomefaceError(Exception):
    """Base class for every error raised by this package."""


class ValidationError(HomefaceError):
    """Bad user input (e.g. an empty name)."""


class NoFaceError(HomefaceError):
    """A capture was attempted while no face is detected."""


class StateError(HomefaceError):
    """Operation is not valid in the current state."""


class StorageError(HomefaceError):
    """Persistent store could not be read or written."""


class NetworkError(HomefaceError):
    """An asset or model fetch failed."""


class InstallError(NetworkError):
    """A cache generation could not fetch its critical asset set."""
