# log.py
import logging
from typing import Optional, Union

LOG_FORMAT = "%(asctime)s %(levelname)s %(message)s"


def setup_logging(app_name: str = "provider-e2e", level: Union[int, str] = logging.INFO,
                  log_file: Optional[str] = None) -> logging.Logger:
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
    handlers = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    logging.basicConfig(level=level, format=LOG_FORMAT, handlers=handlers, force=True)
    # the kubernetes client logs every request at DEBUG through urllib3
    logging.getLogger("urllib3").setLevel(max(level, logging.INFO))
    return logging.getLogger(app_name)
