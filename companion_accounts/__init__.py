"""
Companion Accounts - trial metering, magic-link account linking and
subscription entitlements for companion chat characters.
"""

__version__ = "1.0.0"
