"""Eduvault services.

Service layout:
- cache_service: privacy-tiered cache (lifetime derived from privacy level)
- analytics_service: k-anonymous aggregation, cached analytics, cache warming
- retention_service: archive/purge lifecycle with cache invalidation
- audit_service: hash-chained trail of retention decisions

All services use hash_pii() for record and student identifiers in logs.
EduvaultPlatform (platform.py) wires them together for one process.
"""
