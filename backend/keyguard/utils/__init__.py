from .clock import Clock, SystemClock, system_clock
from .crypto import KeyMaterial, load_fernet

__all__ = ["Clock", "SystemClock", "system_clock", "KeyMaterial", "load_fernet"]
