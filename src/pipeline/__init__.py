"""Pipeline steps around the recommender core.

Catalog ingestion, embedding generation, shop settings, the job queue and the
orchestrator that sequences them.
"""
