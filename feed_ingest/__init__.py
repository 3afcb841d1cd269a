"""
Feed ingestion pipeline: durable job queue, source scheduling, and strategy-based fetching.
"""
