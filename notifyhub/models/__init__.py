# SQLModel definitions, imported here to ensure metadata is populated.
from .base import UUIDMixin, TimestampMixin  # noqa: F401
from .user import User  # noqa: F401
from .subscription import Subscription  # noqa: F401
from .update import Update  # noqa: F401
