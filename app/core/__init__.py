"""Core application components."""

from app.core.database import AsyncSessionLocal, engine, get_db
from app.core.health import health_checker
from app.core.redis import redis_manager

__all__ = ["engine", "get_db", "AsyncSessionLocal", "health_checker", "redis_manager"]
