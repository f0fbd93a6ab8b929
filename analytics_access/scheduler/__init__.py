"""
Refresh scheduling for registered queries.
"""

from analytics_access.scheduler.refresh import RefreshPhase, RefreshScheduler, RefreshStatus

__all__ = ["RefreshPhase", "RefreshScheduler", "RefreshStatus"]
