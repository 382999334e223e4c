"""Daemon mode: one long-lived engine process serving batched queries."""

from style_oracle.daemon.handle import EngineHandle
from style_oracle.daemon.supervisor import DaemonState, DaemonSupervisor

__all__ = ["DaemonState", "DaemonSupervisor", "EngineHandle"]
