# keyguard/database/__init__.py
from . import local_db

__all__ = ["local_db"]
