"""Core building blocks shared by producers, the relay and consumers."""
