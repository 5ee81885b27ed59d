"""
servicetrack realtime module
============================

Change feed, subscription bridge, provider geolocation tracking and the
Socket.IO server.

Usage in FastAPI app startup::

    from servicetrack.realtime.socketServer import socket_app
    from servicetrack.realtime import handlers  # registers event handlers
    app.mount("/ws", socket_app)

The package itself imports nothing so that services can use the change
feed without pulling in the Socket.IO server.
"""
