"""End-to-end scenarios for publishing and delivering newsletter issues.

Each scenario drives the publisher, the delivery workers and the expiry
reaper together against a storage backend and checks one aspect of the
at-most-once publish and at-least-once delivery guarantees.
"""
