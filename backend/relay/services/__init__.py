"""Relay domain services: sessions, rounds, participants and analytics.

Everything here is transport-free and is imported by the HTTP routes,
socket handlers and timers. Only ``registry`` and ``scheduler`` touch the
Flask application.
"""
