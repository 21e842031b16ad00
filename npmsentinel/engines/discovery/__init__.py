"""Discovery engine — change feed consumption and registry resolution."""

from npmsentinel.engines.discovery.coordinator import DiscoveryCoordinator
from npmsentinel.engines.discovery.feed_client import ChangesFeedClient
from npmsentinel.engines.discovery.models import DiscoveryResult, FeedEntry, FeedPage
from npmsentinel.engines.discovery.registry_client import RegistryClient

__all__ = [
    "ChangesFeedClient",
    "DiscoveryCoordinator",
    "DiscoveryResult",
    "FeedEntry",
    "FeedPage",
    "RegistryClient",
]
