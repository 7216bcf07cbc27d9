"""FastAPI operational surface for the event pipeline."""
