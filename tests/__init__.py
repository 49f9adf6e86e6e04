"""
Test suite for dbdelta.

- unit/: individual modules, with drivers and sessions mocked
- integration/: end-to-end runs against a real SQLite database file
"""
