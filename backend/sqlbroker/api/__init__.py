"""
API Package
"""
from sqlbroker.api import query

__all__ = ["query"]
