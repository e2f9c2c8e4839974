"""Smart Signal - Utils Package"""

from .config_loader import ConfigLoader
from .logging_setup import JsonFormatter, configure_logging

__all__ = ['ConfigLoader', 'JsonFormatter', 'configure_logging']
