"""
analytics_access package marker.

Resilient data access for the analytics dashboard: host-mode detection,
identity, query building, retrying fetch, refresh scheduling and windowed
delivery of result sets.
"""
