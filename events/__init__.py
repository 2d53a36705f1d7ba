"""
Event bus — broker-delivered domain events.

- broker: topic exchange, one named queue per event type (Redis Streams, in-memory)
- consumer: subscription lifecycle, status map, graceful shutdown
- handlers: per-event-type side effects with a type guard
"""
