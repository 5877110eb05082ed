"""HTTP clients for the rental API and the marketplace node."""

from listing_manager.clients.http_client import ApiHttpClient
from listing_manager.clients.marketplace import MarketplaceClient, basic_auth_header
from listing_manager.clients.rental import RentalApiClient

__all__ = [
    "ApiHttpClient",
    "MarketplaceClient",
    "RentalApiClient",
    "basic_auth_header",
]
