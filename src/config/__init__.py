"""Configuration management for the exhibit sync engine."""

from .remote import CircuitBreakerState, RemoteConfig
from .settings import Settings

__all__ = ["Settings", "RemoteConfig", "CircuitBreakerState"]
