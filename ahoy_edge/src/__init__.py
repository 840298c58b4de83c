"""
Crawler daemon package for the AhoyDTU-to-storage pipeline.

Polls inverters behind an AhoyDTU gateway over its REST API, buffers
per-channel readings in memory, and periodically flushes them to CSV files
or a SQL database.

CHANGELOG:
- 2026-10-12: Initial creation

TODO:
- None
"""
