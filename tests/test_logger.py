import logging

from sql_runner.logging.logger import SizeTimestampRotatingFileHandler, get_logger


def test_get_logger_namespacing():
    assert get_logger("db.executor").name == "sql_runner.db.executor"
    assert get_logger("sql_runner.cache").name == "sql_runner.cache"


def test_rollover_renames_with_timestamp(tmp_path):
    log_file = tmp_path / "sql_runner.log"
    handler = SizeTimestampRotatingFileHandler(str(log_file), maxBytes=200, backupCount=0, encoding="utf-8")
    logger = logging.getLogger("sql_runner.tests.rotation")
    logger.propagate = False
    logger.addHandler(handler)
    try:
        for i in range(20):
            logger.warning("statement %d finished with a reasonably long message", i)
    finally:
        logger.removeHandler(handler)
        handler.close()

    rotated = sorted(tmp_path.glob("sql_runner_*.log"))
    assert log_file.exists()
    assert rotated


def test_rollover_keeps_newest_backups(tmp_path):
    log_file = tmp_path / "sql_runner.log"
    handler = SizeTimestampRotatingFileHandler(str(log_file), maxBytes=100, backupCount=2, encoding="utf-8")
    logger = logging.getLogger("sql_runner.tests.retention")
    logger.propagate = False
    logger.addHandler(handler)
    try:
        for i in range(50):
            logger.warning("row %d of a result that keeps the log growing", i)
    finally:
        logger.removeHandler(handler)
        handler.close()

    assert len(list(tmp_path.glob("sql_runner_*.log"))) <= 2
