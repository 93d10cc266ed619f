"""
Service layer for storage.
"""
