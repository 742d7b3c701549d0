"""
E-Prometna field client core.

Device/session lifecycle management and QR scan resolution for officers
pulling vehicle and driver records from the E-Prometna backend.
"""

__version__ = "1.0.0"
