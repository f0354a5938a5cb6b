"""Test suite for iterclust.

Test organization:
- fixtures/: Synthetic data generators and test utilities
- unit/: Unit tests for individual modules

Run tests with:
    pytest tests/
    pytest tests/unit/ -v --tb=short
"""
