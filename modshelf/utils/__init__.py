"""
Shared helpers: the naming policy, path utilities and formatting functions.
"""
