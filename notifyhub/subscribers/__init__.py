"""Subscription rules, dispatch and fan-out."""

from .associations import AssociationDescriptor, AssociationKind, describe_association  # noqa: F401
from .engine import SubscriptionEngine  # noqa: F401
from .errors import (  # noqa: F401
    RegistryFrozenError,
    SubscriptionEngineError,
    UnknownAssociationError,
    UnknownRuleError,
    UnknownTypeError,
)
from .fanout import FanOutEngine  # noqa: F401
from .registry import (  # noqa: F401
    AutoSubscribeOptions,
    NotificationKind,
    NotificationOptions,
    RuleRegistry,
)
