"""
Smart Signal - adaptive phase controller for a four-way intersection
"""

from .core.config import ControllerConfig
from .core.controller import TrafficController
from .main import SmartSignalApp

__version__ = "1.0.0"

__all__ = ['SmartSignalApp', 'TrafficController', 'ControllerConfig']
