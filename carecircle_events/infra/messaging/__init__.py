"""RabbitMQ messaging through FastStream.

- broker: lazy broker lifecycle and health
- publisher: bounded, classified publishing (BrokerPublisher)
- topology: exchanges, queues, dead-lettering and their declaration
- conventions: prefixed exchange and queue names
- errors: transient/permanent failure classification
- consumers: websocket bridge, notification dispatcher, audit sink
- subscriptions: wiring consumers to queues with explicit ack/nack

Submodules are imported directly; this package imports nothing so that
``conventions`` stays importable without FastStream side effects.
"""
