"""DeliverEase - task and quality-review assignment engine."""

__version__ = "0.1.0"
