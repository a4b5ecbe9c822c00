"""Rider-side location tracking: GPS state machine, fix filtering, throttled pings."""
