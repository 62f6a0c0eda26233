"""Utils module for the simulation study."""
from .logging_config import (
    setup_logging,
    get_logger,
    JsonFormatter,
    StudyLogger,
    configure_warnings
)
