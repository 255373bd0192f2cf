from src.core.clock.clock import Clock, FixedClock, SystemClock, system_clock

__all__ = ["Clock", "FixedClock", "SystemClock", "system_clock"]
