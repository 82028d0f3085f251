"""
NFTGATE API Module
==================

Flask REST API and WebSocket server for the rule editor.
"""

from .app import create_app, socketio, emit_ruleset_changed

__all__ = [
    "create_app",
    "socketio",
    "emit_ruleset_changed"
]
