"""Exceptions raised by the subscription engine."""


class SubscriptionEngineError(Exception):
    """Base class for configuration and lookup errors in the engine."""


class UnknownAssociationError(SubscriptionEngineError, LookupError):
    """An association name does not resolve on the given model."""

    def __init__(self, model: type, name: str, reason: str = "") -> None:
        self.model = model
        self.name = name
        detail = f"{model.__name__} has no association {name!r}"
        if reason:
            detail = f"{detail}: {reason}"
        super().__init__(detail)


class UnknownTypeError(SubscriptionEngineError, LookupError):
    """A stored type name is not registered with the rule registry."""


class UnknownRuleError(SubscriptionEngineError, LookupError):
    """No notification rule is registered for a notifier/association pair."""


class RegistryFrozenError(SubscriptionEngineError, RuntimeError):
    """Registration attempted after the registry left its initialization phase."""
