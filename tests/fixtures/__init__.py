"""Shared test fixtures package.

Provides in-memory collaborators and helpers for all test suites.
"""
