"""Realtime event distribution gateway for the delivery platform."""
