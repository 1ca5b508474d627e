"""
Tests package - test suite for the Teleport operator.

Contains:
- unit/: Unit tests for individual components
- fixtures/: In-memory Kubernetes and access proxy fakes
"""
