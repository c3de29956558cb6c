"""Exceptions that cross service boundaries.

Per-file upload problems and duplicate warnings are returned as data
(see knowledge.services.ingestion), not raised.
"""


class StorageFailure(Exception):
    """A staging, placement or corpus write could not be persisted."""


class ExternalSearchUnavailable(Exception):
    """The web search provider could not produce an answer."""


class TicketNotFound(LookupError):
    """No staging ticket exists with the given id."""


class FolderNotFound(LookupError):
    """A placement or move named a folder that does not exist."""


class ChatNotFound(LookupError):
    pass


class CorrectionNotFound(LookupError):
    pass


class InvalidReviewInput(ValueError):
    """A correction or promotion request that cannot be applied as given."""


class TicketExpired(Exception):
    """A staging ticket passed its expiry before placement."""


class TicketAlreadyPlaced(Exception):
    """A staging ticket was already consumed by an earlier placement."""
