"""StoreRec: recommendation engine for an e-commerce storefront.

This package turns behavioral events and catalog metadata into ranked
product recommendations using collaborative co-occurrence, content-attribute
similarity and a weighted hybrid of the two, served through a TTL cache.

Modules:
    recommender: scoring services, hybrid fusion, cache and engine
    api: FastAPI application exposing the engine
"""

__version__ = "0.1.0"
