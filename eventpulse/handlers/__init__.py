"""Built-in handlers and the default registry wiring."""

from eventpulse.core.registry import HandlerRegistry
from eventpulse.handlers.user import RedisUserCache, UserCache, UserEventHandler


def install_default_handlers(registry: HandlerRegistry, cache: UserCache | None = None) -> None:
    """Register every built-in handler on ``registry``."""
    registry.register(UserEventHandler(cache=cache))


def create_registry(cache: UserCache | None = None) -> HandlerRegistry:
    """Build a registry that installs the built-in handlers on ``initialize()``."""
    return HandlerRegistry(installers=[lambda registry: install_default_handlers(registry, cache)])


__all__ = [
    "RedisUserCache",
    "UserCache",
    "UserEventHandler",
    "create_registry",
    "install_default_handlers",
]
