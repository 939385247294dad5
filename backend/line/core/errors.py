"""Exceptions shared by the roster engine and its collaborators."""


class RosterError(Exception):
    """A command was rejected; ``str(exc)`` is the reply shown to the user."""


class TransportError(Exception):
    """A LINE Messaging API call failed."""


class RemoteStoreError(Exception):
    """The remote versioned store could not be read or written."""


class VersionConflictError(RemoteStoreError):
    """The version tag sent with a write no longer matches the remote blob."""
