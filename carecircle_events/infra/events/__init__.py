"""Event infrastructure: the transactional outbox and its relay."""
