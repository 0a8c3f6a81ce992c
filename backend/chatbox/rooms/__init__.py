"""Rooms and the dashboard: room creation, room history and the user list."""
