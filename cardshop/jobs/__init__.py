"""
Background jobs
"""
