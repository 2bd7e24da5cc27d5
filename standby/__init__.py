"""
Standby - container and volume replication with automatic failover.
"""

__version__ = "0.1.0"
