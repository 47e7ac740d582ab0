import logging
from typing import Callable, Dict, List, Optional

from autoupdate.domain.exceptions import UnknownProviderException
from autoupdate.domain.provider import Provider
from autoupdate.domain.updater import Updater

logger = logging.getLogger(__name__)

# Constructor that builds a configured Provider from an auth token
ProviderFactory = Callable[[str], Provider]


class ProviderRegistry:
    """
    Catalog of Git hosting provider factories keyed by type identifier.

    Registration is a start-up step; the registry is read-only while a run
    is in progress.
    """

    def __init__(self):
        self._factories: Dict[str, ProviderFactory] = {}

    def register(self, name: str, factory: ProviderFactory) -> None:
        """Stores factory under name, replacing any previous entry."""
        if name in self._factories:
            logger.debug(f"Replacing provider factory '{name}'.")
        self._factories[name] = factory

    def get(self, name: str, token: str) -> Provider:
        """
        Builds a provider instance for the given type and token.

        Raises:
            UnknownProviderException: If no factory is registered under name.
        """
        factory = self._factories.get(name)
        if factory is None:
            raise UnknownProviderException(name)
        return factory(token)

    def names(self) -> List[str]:
        return list(self._factories)


class UpdaterRegistry:
    """
    Catalog of updater instances keyed by their own name. Iteration follows
    registration order.
    """

    def __init__(self):
        self._updaters: Dict[str, Updater] = {}

    def register(self, updater: Updater) -> None:
        if updater.name in self._updaters:
            logger.debug(f"Replacing updater '{updater.name}'.")
        self._updaters[updater.name] = updater

    def get(self, name: str) -> Optional[Updater]:
        return self._updaters.get(name)

    def all(self) -> List[Updater]:
        return list(self._updaters.values())

    def names(self) -> List[str]:
        return list(self._updaters)
