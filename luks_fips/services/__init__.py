"""Conversion services: device resolution, per-device state machine, session."""
