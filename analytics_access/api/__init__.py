"""
analytics_access/api package marker.
"""
