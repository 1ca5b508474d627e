"""
Models package - Pydantic models for type-safe state handling.

Defines data models for:
- Controller configuration snapshots and their change records
- Cluster API clusters and their access proxy registration
- Join tokens and role classes
"""
