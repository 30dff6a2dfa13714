"""Core domain logic for the signal relay.

This package contains pure business logic with no I/O dependencies
(no database, network or WebSocket access): domain models, license-key
and id generation, and the liveness rule. It is shared by the service
layer in app/.
"""
