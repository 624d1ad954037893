"""Shop-floor digital twin - machine simulation and zero-error production interlocks."""

__version__ = "0.1.0"

from .config import Config
from .interlock import InterlockGate, StartRequest, StartResult
from .scheduler import DigitalTwinScheduler
from .store import Store
from .validator import ProductionValidator

__all__ = [
    "Config",
    "DigitalTwinScheduler",
    "InterlockGate",
    "ProductionValidator",
    "StartRequest",
    "StartResult",
    "Store",
    "__version__",
]
