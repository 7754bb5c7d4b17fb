"""
Accounts module for WasteWatch
Citizens, collectors and administrators
"""

from .users import UserDirectory

__all__ = ["UserDirectory"]
