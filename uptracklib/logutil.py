import logging

LOGGER_NAME = 'uptrack'
LOG_FORMAT = '%(asctime)s %(name)s:%(levelname)s %(message)s'


class EntityLoggingAdapter(logging.LoggerAdapter):
    def process(self, msg, kwargs):
        return '[%s] %s' % (self.extra['entity'], msg), kwargs


def get_logger(module_name=None):
    """
    Returns a logger appropriate for use in the uptrack package.
    Modules should request a logger using their __name__
    """

    logger_name = LOGGER_NAME

    if module_name:
        logger_name = '{}.{}'.format(logger_name, module_name)

    return logging.getLogger(logger_name)


def get_entity_logger(entity: str, module_name=None) -> EntityLoggingAdapter:
    """Returns a logger that prefixes every message with the given entity, e.g. a variant image name"""
    return EntityLoggingAdapter(get_logger(module_name), {'entity': entity})


def setup_logging(verbosity: int):
    """
    Configures the root logger from the number of -v flags given on the command line:
    none logs warnings, one logs info and two or more log debug messages.
    """
    if verbosity < 0:
        raise ValueError(f"Invalid verbosity {verbosity}")
    if not verbosity:
        level = logging.WARNING
    elif verbosity == 1:
        level = logging.INFO
    else:
        level = logging.DEBUG
    logging.basicConfig(level=level, format=LOG_FORMAT)
    # aiohttp access logs are noisy even at info
    logging.getLogger("aiohttp").setLevel(max(level, logging.INFO))
    return level
