"""
Shared slowapi limiter so routes and tests toggle the same instance.
"""
from slowapi import Limiter
from slowapi.util import get_remote_address

limiter = Limiter(key_func=get_remote_address)
