"""Output mapping test suite.

Test organization:
- unit/test_table_writer.py: end-to-end reconciliation and loading scenarios
- unit/test_table_uploader.py: bucket/table preparation for one table
- unit/test_storage_client.py: HTTP client against httpx.MockTransport
- unit/test_*.py: one module per library module

fakes.py provides the in-memory storage and metadata backends used by the
writer and uploader tests.
"""
