"""CareCircle transactional outbox and event relay."""

__version__ = "0.1.0"
