"""
temporal_tables test suite.

- unit: value types, option parsing, SQL builders, generator output
- integration: both versioning engines on the in-memory database
- e2e: live PostgreSQL (set TEMPORAL_TABLES_E2E_TESTS=1)
"""
