"""
Infrastate Test Suite

Unit tests for the retry loop, upsert protocols, record stores, sinks,
final persistence, the fleet reader, the state file watcher and the CLI.
"""
