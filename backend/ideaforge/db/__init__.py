from ideaforge.db.base import Base, bind_engine, close_db, engine_options, get_session_factory, init_db
from ideaforge.db.redis import close_redis, create_redis, get_redis, init_redis

__all__ = [
    "Base",
    "bind_engine",
    "close_db",
    "close_redis",
    "create_redis",
    "engine_options",
    "get_redis",
    "get_session_factory",
    "init_db",
    "init_redis",
]
