"""
ClientPulse - Customer Success Dashboard Backend

Tracks client accounts, computes health scores from usage telemetry and
support incidents, and surfaces at-risk accounts to the dashboard.
"""

__version__ = '1.0.0'
