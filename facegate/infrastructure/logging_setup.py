"""Root logger configuration for the facegate.* loggers."""
import logging

LOG_FORMAT = "%(asctime)s %(levelname)-7s [%(name)s] %(message)s"


def configure_logging(debug: bool = False) -> None:
    """Idempotent: safe to call again after a config reload flips DEBUG_LOGGING."""
    level = logging.DEBUG if debug else logging.INFO
    root = logging.getLogger()
    if not any(getattr(h, "_facegate", False) for h in root.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler._facegate = True
        root.addHandler(handler)
    logging.getLogger("facegate").setLevel(level)
    if root.level == logging.NOTSET or root.level > level:
        root.setLevel(level)
