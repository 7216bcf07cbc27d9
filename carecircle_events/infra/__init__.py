"""Infrastructure adapters: database, outbox relay, messaging, logging and metrics."""
