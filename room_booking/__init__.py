# Package initializer for the room booking backend.

"""
The `room_booking` package contains all modules for the room booking backend.

Modules:

- ``config``: application settings loaded from environment variables.
- ``errors``: exceptions surfaced to API callers.
- ``models``: Pydantic data models for API requests and responses.
- ``credentials``: OAuth token storage and the authorization handshake.
- ``google_client``: helpers for interacting with the Google Calendar API.
- ``database`` and ``rooms``: the rooms table and the room directory.
- ``bookings``: booking, approval and availability workflows.
- ``main``: the FastAPI application definition.
- ``calendar_ids``: command line helper listing the account's calendars.

"""
