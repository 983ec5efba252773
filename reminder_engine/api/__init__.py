"""
HTTP routes for health and operator endpoints.
"""
