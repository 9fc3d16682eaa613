import logging
from typing import Optional

from uptracklib import logutil
from uptracklib.cache import SingleFlightCache
from uptracklib.constants import DEFAULT_CACHE_SIZE
from uptracklib.expression import ExpressionEvaluator
from uptracklib.image_info import ImageInspector
from uptracklib.registry import DockerHubClient


class Runtime:
    def __init__(self, cache_size: int = DEFAULT_CACHE_SIZE):
        if cache_size <= 0:
            raise ValueError(f"Invalid cache size {cache_size}")
        self.cache_size = cache_size
        self.logger = self.init_logger()

    @staticmethod
    def init_logger():
        logger = logging.getLogger(logutil.LOGGER_NAME)
        if not logger.handlers:
            handler = logging.StreamHandler()
            handler.setFormatter(logging.Formatter(logutil.LOG_FORMAT))
            logger.addHandler(handler)
            # uptrack messages go through the handler above only
            logger.propagate = False
        return logger

    def new_registry_client(self, username: Optional[str] = None, password: Optional[str] = None) -> DockerHubClient:
        return DockerHubClient(username=username, password=password, cache=SingleFlightCache(self.cache_size))

    def new_image_inspector(self, registry_config: Optional[str] = None) -> ImageInspector:
        return ImageInspector(cache=SingleFlightCache(self.cache_size), registry_config=registry_config)

    @staticmethod
    def new_expression_evaluator() -> ExpressionEvaluator:
        return ExpressionEvaluator()
