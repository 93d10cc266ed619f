"""
Configuration and application startup helpers.
"""
