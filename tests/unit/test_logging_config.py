import io
import logging

from cryptkeep.core.logging_config import configure_logging


def test_configure_logging_sets_package_level():
    logger = configure_logging(logging.DEBUG)
    try:
        assert logger.name == "cryptkeep"
        assert logger.level == logging.DEBUG
        assert logging.getLogger("cryptkeep.core.pipeline").getEffectiveLevel() == logging.DEBUG
    finally:
        logger.setLevel(logging.NOTSET)


def test_configure_logging_writes_to_given_stream():
    root = logging.getLogger()
    saved = root.handlers[:]
    root.handlers = []
    stream = io.StringIO()
    try:
        configure_logging(logging.INFO, stream=stream)
        logging.getLogger("cryptkeep.core.keeper").info("purged %d entries", 2)
        logging.getLogger("elsewhere").info("not ours")
    finally:
        root.handlers = saved
        logging.getLogger("cryptkeep").setLevel(logging.NOTSET)

    out = stream.getvalue()
    assert "INFO cryptkeep.core.keeper: purged 2 entries" in out
    assert "not ours" not in out
