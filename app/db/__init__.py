# File: app/db/__init__.py
"""
Database package for Receets: models and session management.
"""
