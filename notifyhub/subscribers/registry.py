"""
Rule registry: which types have subscribers, which types notify them, and
which lifecycle events auto-subscribe users.

The registry is populated once at startup and then frozen; after that it is
only read (by the dispatcher, the fan-out engine and the workers), so no
locking is needed.

    registry = RuleRegistry()
    registry.register_subscribable(Post)
    registry.notifies_subscribers_of(Comment, "post", on="create", priority=2)
    registry.notifies_owner_of(Favorite, "post")
    registry.auto_subscribes(Comment, "user", to="post",
                             if_=lambda comment, post: comment.user_id != post.user_id)
    registry.freeze()
"""

from __future__ import annotations

from enum import Enum
from types import MappingProxyType
from typing import Any, Callable, FrozenSet, Mapping, Optional, Union

import structlog
from pydantic import BaseModel, ConfigDict, Field, field_validator

from notifyhub.core.lifecycle import LifecycleEvent
from notifyhub.core.records import pluralize, type_name, underscore
from notifyhub.subscribers.associations import (
    SELF,
    AssociationDescriptor,
    describe_association,
)
from notifyhub.subscribers.errors import (
    RegistryFrozenError,
    UnknownAssociationError,
    UnknownRuleError,
    UnknownTypeError,
)

log = structlog.get_logger()

NOTIFY_SUBSCRIBERS = "notify_subscribers_of"
NOTIFY_OWNER = "notify_owner_of"
DEFAULT_NOTIFICATION = "create"
DEFAULT_PRIORITY = 1

TRIGGER_EVENTS = frozenset({LifecycleEvent.CREATE, LifecycleEvent.UPDATE, LifecycleEvent.SAVE})


class NotificationKind(str, Enum):
    SUBSCRIBERS = "subscribers"  # fan out to every subscriber of the target
    OWNER = "owner"  # one update for the target's owner


# ---------------------------------------------------------------------------
# Options
# ---------------------------------------------------------------------------


class NotificationOptions(BaseModel):
    """Options for `notifies_subscribers_of` / `notifies_owner_of`.

    Accepts the option names as keyword or dict keys; ``with`` and ``if`` may
    be spelled ``with_`` / ``if_``.

    * ``on``: create, update and/or save (default create).
    * ``with``: name of the method that generates the updates.
    * ``if``: ``(notifier, subscribable, subscription) -> bool`` evaluated per
      subscription inside the fan-out job.
    * ``queue_if``: ``(record) -> bool`` evaluated in the lifecycle hook;
      false means no job is queued at all.
    * ``priority``: queue priority, lower runs sooner.
    * ``include_owner``: also notify the subscribable's owner, and don't skip
      the actor's own subscription.
    * ``notification``: label stored on each Update.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, arbitrary_types_allowed=True)

    on: FrozenSet[LifecycleEvent] = frozenset({LifecycleEvent.CREATE})
    with_: Optional[str] = Field(default=None, alias="with")
    if_: Optional[Callable[..., Any]] = Field(default=None, alias="if")
    queue_if: Optional[Callable[..., Any]] = None
    priority: int = DEFAULT_PRIORITY
    include_owner: bool = False
    notification: Optional[str] = None

    @field_validator("on", mode="before")
    @classmethod
    def _normalize_on(cls, value: Any) -> Any:
        if isinstance(value, (str, LifecycleEvent)):
            value = [value]
        events = frozenset(LifecycleEvent(v) for v in value)
        if not events:
            raise ValueError("on: at least one event is required")
        if not events <= TRIGGER_EVENTS:
            raise ValueError(f"on: unsupported events {sorted(e.value for e in events - TRIGGER_EVENTS)}")
        return events


class AutoSubscribeOptions(BaseModel):
    """Options for `auto_subscribes`.

    * ``to``: association yielding the resource (default: the record itself).
    * ``if``: ``(record, resource) -> bool``; subscribe only when true.
    * ``on``: create (default) or update.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, arbitrary_types_allowed=True)

    to: Optional[str] = None
    if_: Optional[Callable[..., Any]] = Field(default=None, alias="if")
    on: LifecycleEvent = LifecycleEvent.CREATE

    @field_validator("on")
    @classmethod
    def _create_or_update(cls, value: LifecycleEvent) -> LifecycleEvent:
        if value not in (LifecycleEvent.CREATE, LifecycleEvent.UPDATE):
            raise ValueError("on: auto-subscription triggers on create or update")
        return value


OptionsInput = Union[NotificationOptions, Mapping[str, Any], None]
AutoOptionsInput = Union[AutoSubscribeOptions, Mapping[str, Any], None]


# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------


class NotificationRule:
    """A notifier type's binding of lifecycle events to a target association."""

    __slots__ = ("notifier", "association", "kind", "options", "descriptor")

    def __init__(
        self,
        notifier: type,
        association: str,
        kind: NotificationKind,
        options: NotificationOptions,
        descriptor: Optional[AssociationDescriptor] = None,
    ):
        self.notifier = notifier
        self.association = association
        self.kind = kind
        self.options = options
        self.descriptor = descriptor  # None until the association can be resolved

    @property
    def triggers(self) -> FrozenSet[LifecycleEvent]:
        return self.options.on

    @property
    def method(self) -> str:
        if self.options.with_:
            return self.options.with_
        return NOTIFY_OWNER if self.kind is NotificationKind.OWNER else NOTIFY_SUBSCRIBERS

    @property
    def priority(self) -> int:
        return self.options.priority

    @property
    def include_owner(self) -> bool:
        return self.options.include_owner

    @property
    def notification(self) -> str:
        if self.options.notification:
            return self.options.notification
        if self.kind is NotificationKind.OWNER:
            return underscore(self.notifier.__name__)
        return DEFAULT_NOTIFICATION

    def __repr__(self) -> str:
        return f"NotificationRule({self.notifier.__name__}.{self.association}, kind={self.kind.value}, priority={self.priority})"


class AutoSubscriptionRule:
    """Subscribe `subscriber` (an association yielding a user) to `to` on a lifecycle event."""

    __slots__ = ("notifier", "subscriber", "options", "subscriber_descriptor", "resource_descriptor")

    def __init__(
        self,
        notifier: type,
        subscriber: str,
        options: AutoSubscribeOptions,
        subscriber_descriptor: Optional[AssociationDescriptor] = None,
        resource_descriptor: Optional[AssociationDescriptor] = None,
    ):
        self.notifier = notifier
        self.subscriber = subscriber
        self.options = options
        self.subscriber_descriptor = subscriber_descriptor
        self.resource_descriptor = resource_descriptor

    @property
    def key(self) -> tuple[str, str]:
        return self.subscriber, self.resource_association

    @property
    def resource_association(self) -> str:
        return self.options.to or SELF

    @property
    def trigger(self) -> LifecycleEvent:
        return LifecycleEvent(self.options.on)

    def __repr__(self) -> str:
        return f"AutoSubscriptionRule({self.notifier.__name__}.{self.subscriber} -> {self.resource_association})"


def _try_describe(model: type, name: str) -> Optional[AssociationDescriptor]:
    try:
        return describe_association(model, name)
    except UnknownAssociationError as exc:
        log.debug("registry.association_deferred", model=model.__name__, association=name, reason=str(exc))
        return None


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class RuleRegistry:
    """Process-wide notification and auto-subscription configuration."""

    def __init__(self) -> None:
        self._subscribables: dict[str, type] = {}
        self._notifying: dict[str, dict[str, NotificationOptions]] = {}
        self._notifiers: dict[str, type] = {}
        self._rules: dict[type, dict[tuple[NotificationKind, str], NotificationRule]] = {}
        self._auto_rules: dict[type, dict[tuple[str, str], AutoSubscriptionRule]] = {}
        self._frozen = False

    # --- initialization phase ---

    @property
    def frozen(self) -> bool:
        return self._frozen

    def freeze(self) -> None:
        self._frozen = True
        log.info(
            "registry.frozen",
            subscribables=sorted(self._subscribables),
            notifiers=sorted(self._notifiers),
        )

    def _check_writable(self) -> None:
        if self._frozen:
            raise RegistryFrozenError("rule registry is frozen; register rules during startup")

    def register_subscribable(
        self,
        model: type,
        notifying: Optional[Mapping[str, OptionsInput]] = None,
    ) -> bool:
        """Declare that `model` can have subscribers.

        `notifying` explicitly declares notifying associations that can't be
        discovered automatically (polymorphic notifiers). Returns False when the
        type was already registered.
        """
        self._check_writable()
        name = type_name(model)
        if name in self._subscribables:
            return False

        self._subscribables[name] = model
        links = self._notifying.setdefault(name, {})
        for label, options in (notifying or {}).items():
            links[label] = _coerce_options(options)

        # Rules registered before this type pick up their back-link now.
        for rules in self._rules.values():
            for rule in rules.values():
                self._back_link(rule)

        log.debug("registry.subscribable_registered", type=name)
        return True

    def register_notification_rule(
        self,
        notifier: type,
        association: str,
        options: OptionsInput = None,
        *,
        kind: NotificationKind = NotificationKind.SUBSCRIBERS,
    ) -> NotificationRule:
        """Register (or overwrite) the rule for `notifier` -> `association`."""
        self._check_writable()
        rule = NotificationRule(
            notifier,
            association,
            NotificationKind(kind),
            _coerce_options(options),
            _try_describe(notifier, association),
        )
        self._rules.setdefault(notifier, {})[(rule.kind, association)] = rule
        self._notifiers[type_name(notifier)] = notifier
        self._back_link(rule)

        log.debug(
            "registry.rule_registered",
            notifier=notifier.__name__,
            association=association,
            kind=rule.kind.value,
            priority=rule.priority,
        )
        return rule

    def notifies_subscribers_of(self, notifier: type, association: str, **options: Any) -> NotificationRule:
        return self.register_notification_rule(
            notifier, association, options, kind=NotificationKind.SUBSCRIBERS
        )

    def notifies_owner_of(self, notifier: type, association: str, **options: Any) -> NotificationRule:
        return self.register_notification_rule(
            notifier, association, options, kind=NotificationKind.OWNER
        )

    def register_auto_subscription_rule(
        self,
        notifier: type,
        subscriber: str,
        options: AutoOptionsInput = None,
    ) -> AutoSubscriptionRule:
        self._check_writable()
        if options is None:
            options = AutoSubscribeOptions()
        elif not isinstance(options, AutoSubscribeOptions):
            options = AutoSubscribeOptions.model_validate(dict(options))

        rule = AutoSubscriptionRule(notifier, subscriber, options)
        rule.subscriber_descriptor = _try_describe(notifier, subscriber)
        rule.resource_descriptor = _try_describe(notifier, rule.resource_association)
        self._auto_rules.setdefault(notifier, {})[rule.key] = rule

        log.debug(
            "registry.auto_subscription_registered",
            notifier=notifier.__name__,
            subscriber=subscriber,
            to=rule.resource_association,
            on=rule.trigger.value,
        )
        return rule

    def auto_subscribes(self, notifier: type, subscriber: str, **options: Any) -> AutoSubscriptionRule:
        return self.register_auto_subscription_rule(notifier, subscriber, options)

    def _back_link(self, rule: NotificationRule) -> None:
        # Subscriber rules only, keyed like the association the target would declare for them.
        if rule.kind is not NotificationKind.SUBSCRIBERS:
            return
        descriptor = rule.descriptor
        if descriptor is None or descriptor.target is None:
            return
        target_name = type_name(descriptor.target)
        if target_name not in self._subscribables:
            return
        key = pluralize(underscore(rule.notifier.__name__))
        if not hasattr(descriptor.target, key):
            return
        links = self._notifying.setdefault(target_name, {})
        links.setdefault(key, rule.options)

    # --- steady-state reads ---

    def is_subscribable(self, model: type) -> bool:
        return self._subscribables.get(type_name(model)) is model

    def subscribable_types(self) -> list[type]:
        return list(self._subscribables.values())

    def notifier_types(self) -> list[type]:
        return list(self._notifiers.values())

    def auto_subscribing_types(self) -> list[type]:
        return list(self._auto_rules)

    def subscribable_class(self, name: str) -> type:
        try:
            return self._subscribables[name]
        except KeyError:
            raise UnknownTypeError(f"{name!r} is not a registered subscribable type") from None

    def notifier_class(self, name: str) -> type:
        try:
            return self._notifiers[name]
        except KeyError:
            raise UnknownTypeError(f"{name!r} is not a registered notifier type") from None

    def notifying_associations(self, model: type) -> Mapping[str, NotificationOptions]:
        """Associations known to produce updates about `model`, for introspection."""
        return MappingProxyType(self._notifying.get(type_name(model), {}))

    def rules_for(self, notifier: type) -> list[NotificationRule]:
        """Notification rules for `notifier` in registration order, including inherited ones."""
        merged: dict[tuple[NotificationKind, str], NotificationRule] = {}
        for cls in reversed(notifier.__mro__):
            merged.update(self._rules.get(cls, {}))
        return list(merged.values())

    def rule_for(
        self,
        notifier: type,
        association: str,
        kind: NotificationKind = NotificationKind.SUBSCRIBERS,
    ) -> NotificationRule:
        for cls in notifier.__mro__:
            rule = self._rules.get(cls, {}).get((kind, association))
            if rule is not None:
                return rule
        raise UnknownRuleError(f"{notifier.__name__} has no {kind.value} rule for {association!r}")

    def declared_rules(self, notifier: type) -> list[NotificationRule]:
        """Rules registered on exactly `notifier` (not inherited)."""
        return list(self._rules.get(notifier, {}).values())

    def declared_auto_subscription_rules(self, notifier: type) -> list[AutoSubscriptionRule]:
        return list(self._auto_rules.get(notifier, {}).values())

    def auto_subscription_rules_for(self, notifier: type) -> list[AutoSubscriptionRule]:
        merged: dict[tuple[str, str], AutoSubscriptionRule] = {}
        for cls in reversed(notifier.__mro__):
            merged.update(self._auto_rules.get(cls, {}))
        return list(merged.values())

    def descriptor_for(self, rule: NotificationRule) -> AssociationDescriptor:
        """The rule's association descriptor, resolving it now if registration had to defer it.

        Raises UnknownAssociationError if it still doesn't resolve.
        """
        if rule.descriptor is None:
            rule.descriptor = describe_association(rule.notifier, rule.association)
            self._back_link(rule)
        return rule.descriptor

    def subscriber_descriptor_for(self, rule: AutoSubscriptionRule) -> AssociationDescriptor:
        if rule.subscriber_descriptor is None:
            rule.subscriber_descriptor = describe_association(rule.notifier, rule.subscriber)
        return rule.subscriber_descriptor

    def resource_descriptor_for(self, rule: AutoSubscriptionRule) -> AssociationDescriptor:
        if rule.resource_descriptor is None:
            rule.resource_descriptor = describe_association(rule.notifier, rule.resource_association)
        return rule.resource_descriptor


def _coerce_options(options: OptionsInput) -> NotificationOptions:
    if options is None:
        return NotificationOptions()
    if isinstance(options, NotificationOptions):
        return options
    return NotificationOptions.model_validate(dict(options))
