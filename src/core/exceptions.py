"""Exceptions shared by the domain, persistence and service layers."""


class GameError(Exception):
    """Base class for all errors raised by the scorecard."""


class ValidationError(GameError):
    """Input rejected before it reaches the store (pins above the ceiling, slot out of range, bad request field)."""


class NotFoundError(GameError):
    """Operation against an unknown game or player id."""


class TransientIOError(GameError):
    """Network / write failure at the store boundary. The user may re-trigger the action."""


class ConflictError(GameError):
    """A slot assumed empty already holds a value."""
