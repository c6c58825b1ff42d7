from pathlib import Path
from typing import Final

from logly import _LoggerProxy, logger

LOG_DIR_PATH: Final[Path] = Path(__file__).parent.parent / "logs"


def init_logger(log_dir: Path | None = None, level: str = "INFO") -> _LoggerProxy:
    """Initialize the logger.

    Configures console output and a rotating file sink named
    `swift_toolchains.log`.

    Args:
        log_dir: Directory for the log file. Defaults to `LOG_DIR_PATH`.
        level: Minimum level to record.
    """
    log_dir = log_dir or LOG_DIR_PATH

    logger.configure(
        level=level,
        color=True,
        console=True,
        auto_sink=True,
    )

    logger.add(f"{log_dir}/swift_toolchains.log", size_limit="10MB", retention=3)

    logger.success("logger initialized!")

    return logger
