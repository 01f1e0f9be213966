"""PathRec: collection-to-collection recommendation graphs for storefronts.

This package ingests a shop's collections, embeds them, materializes a ranked,
audience-filtered nearest-neighbor graph and serves it to the storefront.

Modules:
    api: FastAPI application and REST API endpoints
    db: SQLAlchemy engine, sessions and models
    pipeline: Ingestion, embeddings, job queue and orchestrator
    recommender: Similarity, compatibility, graph building and the read path
"""

__version__ = "0.1.0"
