import os, logging, sys

logger = logging.getLogger("nodediag_mcp")


def _ensure_logger():
    """Give the package logger a stdout handler unless someone already did.

    Nothing is attached at import time; the host application's logging
    setup wins whenever it configured this logger first.
    """
    if logger.handlers:
        return
    logger.setLevel(logging.INFO if _verbose() else logging.WARNING)
    h = logging.StreamHandler(stream=sys.stdout)
    h.setFormatter(logging.Formatter('%(asctime)s %(levelname)s %(threadName)s %(message)s'))
    logger.addHandler(h)


def _verbose() -> bool:
    return os.environ.get('DEBUG_VERBOSE') == '1'


def dbg(msg: str):
    """Trace line, emitted only when DEBUG_VERBOSE=1 (read on every call)."""
    if _verbose():
        _ensure_logger()
        if logger.level > logging.INFO:
            logger.setLevel(logging.INFO)
        logger.info('[debug] %s', msg)


def warn(msg: str, *args):
    """Always-on warning for documents that failed or were abandoned."""
    _ensure_logger()
    logger.warning(msg, *args)
