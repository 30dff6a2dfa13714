"""External service clients."""

from app.clients.metaapi_rest import MetaApiError, MetaApiRestClient

__all__ = [
    "MetaApiError",
    "MetaApiRestClient",
]
