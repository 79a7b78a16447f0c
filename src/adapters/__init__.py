"""Adapters that connect the core ports to SQLite and Twilio."""
