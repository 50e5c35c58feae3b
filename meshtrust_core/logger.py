import logging, json, sys, time, os

ROOT_LOGGER = "MeshTrust"


class JsonLineFormatter(logging.Formatter):
    """One JSON object per line; the message is escaped, so quotes stay valid JSON."""

    converter = time.gmtime  # UTC

    def format(self, record):
        doc = {
            "ts": self.formatTime(record, "%Y-%m-%dT%H:%M:%SZ"),
            "level": record.levelname,
            "name": record.name,
            "msg": record.getMessage(),
        }
        if record.exc_info:
            doc["exc"] = self.formatException(record.exc_info)
        return json.dumps(doc)


def _configure_root(to_file):
    root = logging.getLogger(ROOT_LOGGER)
    formatter = JsonLineFormatter()
    if not root.handlers:
        root.setLevel(os.getenv("MESHTRUST_LOG_LEVEL", "INFO").upper())
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(formatter)
        root.addHandler(handler)

    if to_file:
        target = os.path.abspath(to_file)
        if not any(getattr(h, "baseFilename", None) == target for h in root.handlers):
            os.makedirs(os.path.dirname(target), exist_ok=True)
            file_handler = logging.FileHandler(target)
            file_handler.setFormatter(formatter)
            root.addHandler(file_handler)
    return root


def get_logger(name=ROOT_LOGGER, level=None, to_file=None):
    """
    Structured JSON-line logger for meshtrust components.

    Handlers live on the "MeshTrust" logger only; component loggers are its
    children ("Engine" becomes "MeshTrust.Engine") and propagate to it.
    The root level comes from MESHTRUST_LOG_LEVEL unless `level` is given.
    """
    if name != ROOT_LOGGER and not name.startswith(ROOT_LOGGER + "."):
        name = f"{ROOT_LOGGER}.{name}"
    _configure_root(to_file)
    logger = logging.getLogger(name)
    if level is not None:
        logger.setLevel(level)
    return logger
