"""
Ingestion
=========

Source side of replication: reads table metadata from PostgreSQL and dumps
table contents to the object store staging area, where the warehouse bulk
loads them from.

No transformations or cleaning - data is staged exactly as-is.
"""

__version__ = "1.0.0"
