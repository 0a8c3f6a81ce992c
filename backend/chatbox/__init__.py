"""Chatbox: real-time chat backend (accounts, rooms, direct messages, typing and presence)."""

__version__ = "0.1.0"
