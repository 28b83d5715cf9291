"""
Session Relay

HTTP control surface that opens messaging-account sessions, waits for them to
connect, and relays their credential files over the same messaging channel.
"""

__version__ = "0.1.0"
