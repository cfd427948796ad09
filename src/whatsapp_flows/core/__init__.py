"""
Core infrastructure: settings, logging, database and Redis access.
"""
