"""Warehouse inventory and reconciliation backend.

The HTTP application lives in :mod:`warehouse.api`; the record engine
(filtering, aggregation, optimistic writes) is importable without FastAPI.
"""
