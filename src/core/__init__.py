"""Core domain package for fanout.

Core contains normalization, classification, rate gating, and dispatch logic
without any Twilio or storage-specific code, keeping the business logic portable.
"""
