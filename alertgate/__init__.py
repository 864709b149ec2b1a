"""
Alertgate — reliable Alertmanager webhook ingestion for the incident platform.
"""

__version__ = "1.0.0"
