"""Integration tests for the vote pipeline storage backends.

These tests need live Redis and PostgreSQL instances and skip otherwise.
"""
