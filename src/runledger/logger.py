import logging

import notifiers.logging

from runledger import config

LOG_FORMAT = "%(asctime)s %(name)s %(levelname)s - %(message)s"

logger = logging.getLogger("runledger")


def get_log_handlers(target: logging.Logger):
    if config.TELEGRAM_TOKEN is None:
        return []
    handler = notifiers.logging.NotificationHandler(
        "telegram",
        defaults={
            "token": config.TELEGRAM_TOKEN,
            "chat_id": config.TELEGRAM_CHAT_ID,
        },
    )
    # only rate limit trouble and failed gathers are worth a message
    handler.setLevel(logging.WARNING)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    target.addHandler(handler)
    return [handler]


def configure_logging(level=None) -> logging.Logger:
    level = config.OVERRIDE_LOGGING if level is None else level
    logging.basicConfig(format=LOG_FORMAT, level=logging.INFO)
    logging.getLogger().setLevel(level)
    logger.setLevel(level)
    get_log_handlers(logger)
    return logger
