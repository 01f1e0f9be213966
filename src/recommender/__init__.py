"""Recommendation core for PathRec.

This package holds the algorithmic pieces: vector similarity and adaptive
thresholds, audience compatibility, embedding text rendering, the graph
builder that materializes ranked edges per shop, and the read path that
serves them.
"""
