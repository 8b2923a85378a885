"""Room coordination services: sessions, rooms, throttling and timers.

Nothing in this package imports Flask; the Socket.IO layer hands each
inbound event to the ``SessionCoordinator`` and supplies the transport it
emits through.
"""
