"""
miRNA Pipeline

Preparation of miRDeep2 small-RNA counts for differential expression:
ingestion, annotation, sample metadata, filtering and TMM normalization.
"""

__version__ = "1.0.0"
