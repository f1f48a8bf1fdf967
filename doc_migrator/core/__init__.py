"""
Core modules for Doc Migrator.

This package contains rate limiting, request queueing, cost tracking,
plan estimation and the migration executor.
"""
