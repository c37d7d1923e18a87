"""
Domain errors for the earnings ledger.

Every ledger operation fails with one of these before any state is
mutated; the API layer maps each family to an HTTP status.
"""


class EarningsServiceError(Exception):
    pass


# Validation

class ValidationError(EarningsServiceError):
    pass


class InvalidAmount(ValidationError):
    pass


class BelowMinimum(ValidationError):
    pass


class PayoutDetailsMissing(ValidationError):
    pass


class InvalidStatus(ValidationError):
    pass


class ReasonRequired(ValidationError):
    pass


class InvalidProductConfiguration(ValidationError):
    pass


# Lookups

class NotFoundError(EarningsServiceError):
    pass


# Conflicts with current state

class ConflictError(EarningsServiceError):
    pass


class InsufficientBalance(ConflictError):
    pass


class DuplicatePendingRequest(ConflictError):
    pass


class AlreadyProcessed(ConflictError):
    pass


class SubscriptionRequired(ConflictError):
    pass


# External collaborators

class UpstreamFailure(EarningsServiceError):
    pass
