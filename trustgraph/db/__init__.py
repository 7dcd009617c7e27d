# Database module
from .engine import create_cache_engine, make_session_factory, session_scope, check_connection

__all__ = ["create_cache_engine", "make_session_factory", "session_scope", "check_connection"]
