from __future__ import annotations


class ShelfError(Exception):
    """Base class for every error raised by sqla_shelf."""


class ConfigurationError(ShelfError):
    """A relation or model is incompletely or inconsistently declared.

    Raised at declaration time or on first use of the relation; never retried.
    """


class UnknownMorphTypeError(ConfigurationError):
    """A stored ``morph_to`` discriminator has no registered candidate."""


class UnknownRelationError(ShelfError, KeyError):
    """A relation name (or eager path segment) is not declared on the model."""

    def __str__(self) -> str:
        # KeyError quotes its argument; keep the plain message instead.
        return str(self.args[0]) if self.args else ""


class NotFoundError(ShelfError):
    """``fetch(require=True)`` matched no rows."""


class EmptyResponseError(NotFoundError):
    """``Collection.fetch(require=True)`` matched no rows."""


class NoRowsUpdatedError(ShelfError):
    """An update matched no rows while ``require`` was in effect."""


class NoRowsDeletedError(ShelfError):
    """A ``destroy(require=True)`` matched no rows."""
