"""
Version 1 of the waitlist HTTP API
"""
