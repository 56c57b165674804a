"""
External Service Adapters

Each adapter owns one remote API: authentication, pagination, response
normalisation and error mapping.

- UpcResolver: UPCitemdb barcode lookup (best-effort title resolution)
- BGGClient: BoardGameGeek XML API2 search and detail
- SquareCatalogGateway: Square catalog enumeration, image upload, description update
"""
from catalog_sync.adapters.upc import UpcResolver
from catalog_sync.adapters.bgg import BGGClient
from catalog_sync.adapters.square import SquareCatalogGateway

__all__ = [
    "UpcResolver",
    "BGGClient",
    "SquareCatalogGateway",
]
