"""Error taxonomy for the giveaway core."""


class GiveawayError(Exception):
    """Base class for all giveaway core errors."""


class ConflictError(GiveawayError):
    """Operation is illegal in the current giveaway state."""


class NotAcceptingError(GiveawayError):
    """A contribution arrived while no giveaway is running."""


class PersistenceError(GiveawayError):
    """A write to or read from the persistent store failed."""


class TransportError(GiveawayError):
    """Sending to a connected client failed."""
