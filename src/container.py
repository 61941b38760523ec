"""Service container holding the authorization store and settings.

The container gives the authorization store an explicit lifecycle: it is
created by configure_services() at application startup, stored on the
FastAPI application state and disposed on shutdown. There is no process-wide
instance, so every application and every test gets its own store.

Registered Services:
    - "settings": AuthSettings instance
    - "authorization_store": InMemoryAuthorizationStore (singleton)

Service Lifetimes:
    - Singleton: created on first resolution and reused
    - Instance: pre-created objects registered directly

Dependencies:
    - structlog: resolution and disposal logging
"""

import asyncio
from typing import Any, Callable, Optional

import structlog

from .auth.models import (
    SCOPE_ADMIN,
    Authorization,
    TokenType,
    timestamp_now,
)
from .auth.store import AuthorizationStore, InMemoryAuthorizationStore
from .config import AuthSettings

logger = structlog.get_logger()

ADMIN_REALM = "system"
ADMIN_CLIENT_ID = "admin"


class ServiceDescriptor:
    """Creation metadata for a registered singleton."""

    def __init__(self, implementation: Callable[..., Any], dependencies: Optional[list[str]] = None):
        self.implementation = implementation
        self.dependencies = dependencies or []


class Container:
    """Lightweight dependency injection container.

    Internal State:
        _services: service descriptors by key
        _instances: resolved singletons and registered instances by key
        _resolving: keys currently being resolved (circular detection)

    Thread Safety:
        Registration is expected to happen during single-threaded startup.
        Resolution of already-created singletons is a dictionary read.
    """

    def __init__(self):
        self._services: dict[str, ServiceDescriptor] = {}
        self._instances: dict[str, Any] = {}
        self._resolving: set[str] = set()

    def register_singleton(
        self,
        key: str,
        implementation: Callable[..., Any],
        dependencies: Optional[list[str]] = None,
    ) -> "Container":
        """Register a service created once on first resolution.

        Args:
            key: Name of the service
            implementation: Class or factory, called with resolved dependencies
            dependencies: Keys of services passed to the factory in order

        Returns:
            Container: Self for fluent registration chaining
        """
        self._services[key] = ServiceDescriptor(implementation, dependencies)
        return self

    def register_instance(self, key: str, instance: Any) -> "Container":
        """Register a pre-created instance."""
        self._instances[key] = instance
        return self

    def get(self, key: str) -> Any:
        """Resolve a service, creating it and its dependencies if needed.

        Raises:
            ValueError: If the service is not registered or a circular
                dependency is detected
        """
        if key in self._resolving:
            raise ValueError(f"Circular dependency detected for {key}")

        if key in self._instances:
            return self._instances[key]

        if key not in self._services:
            raise ValueError(f"Service {key} is not registered")

        descriptor = self._services[key]
        self._resolving.add(key)
        try:
            resolved_dependencies = [self.get(dep) for dep in descriptor.dependencies]
            instance = descriptor.implementation(*resolved_dependencies)
            self._instances[key] = instance

            logger.debug("Service resolved successfully", service=key, dependencies=descriptor.dependencies)
            return instance
        finally:
            self._resolving.discard(key)

    async def dispose_async(self):
        """Close instances exposing a close() method and clear the cache.

        Both coroutine and plain close() methods are supported. Cleanup
        failures are logged and do not stop disposal of other services.
        """
        for key, instance in self._instances.items():
            close = getattr(instance, "close", None)
            if close is None:
                continue
            try:
                if asyncio.iscoroutinefunction(close):
                    await close()
                else:
                    close()
            except Exception as e:
                logger.error("Error disposing service", service=key, error=str(e))

        self._instances.clear()
        logger.info("Container disposed successfully")


def create_authorization_store(settings: AuthSettings) -> InMemoryAuthorizationStore:
    """Create the authorization store and apply the startup seeding from settings.

    Seeding Order:
        1. Records from settings.seed_file, if configured
        2. The bootstrap admin authorization, if settings.admin_token is set

    Raises:
        MalformedRecordError: If the seed file contains an invalid record
        OSError: If the seed file cannot be read
    """
    store = InMemoryAuthorizationStore(conflict_policy=settings.identity_conflict)

    if settings.seed_file:
        with open(settings.seed_file, encoding="utf-8") as f:
            store.load(f)

    if settings.admin_token:
        register_admin_token(store, settings.admin_token)

    return store


def register_admin_token(store: AuthorizationStore, token: str) -> Authorization:
    """Register a never-expiring admin authorization for a configured token."""
    now = timestamp_now()
    auth = Authorization(
        client_id=ADMIN_CLIENT_ID,
        realm=ADMIN_REALM,
        token=token,
        token_type=TokenType.API,
        user_id=ADMIN_CLIENT_ID,
        scope=SCOPE_ADMIN,
        expires=0,
        created=now,
        updated=now,
    )
    store.register(auth)
    logger.info("Bootstrap admin authorization registered", realm=ADMIN_REALM)
    return auth


def configure_services(settings: Optional[AuthSettings] = None) -> Container:
    """Create a new container with the authorization services registered.

    Args:
        settings: Service settings, read from the environment when omitted

    Returns:
        Container: A fresh container; the store is created on first use
    """
    if settings is None:
        settings = AuthSettings.from_env()

    container = Container()
    container.register_instance("settings", settings)
    container.register_singleton("authorization_store", create_authorization_store, ["settings"])

    logger.info(
        "Service container configured successfully",
        scope_matching=settings.scope_matching.value,
        identity_conflict=settings.identity_conflict.value,
    )
    return container
