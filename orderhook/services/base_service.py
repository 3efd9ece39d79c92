from abc import ABC

from orderhook.core.logging import get_logger
from orderhook.core.redis_client import RedisClient


class BaseService(ABC):
    """Base service class with common functionality."""

    def __init__(self, store: RedisClient):
        self.store = store
        self.logger = get_logger(self.__class__.__name__)
