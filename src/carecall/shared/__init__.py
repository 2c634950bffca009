"""
Shared infrastructure: logging, database sessions and common errors.
"""
