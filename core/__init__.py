"""Core module - configuration and observability shared by every component.

Connector-specific logic (Haulmer, Google Calendar) belongs in /connectors/.
"""

__version__ = "1.0.0"
