"""Telephony media-stream adapters.

Each vendor protocol turns its WebSocket messages into the events in
``telephony.events`` and renders outbound audio/clear/mark messages.
``telephony.transport`` owns the single ordered outbound channel per call.
"""
