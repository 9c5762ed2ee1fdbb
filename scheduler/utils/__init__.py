"""
Utility functions shared by the scheduling modules.

- time_model: minutes-since-midnight conversion, overlap test, clamp and snap
"""
