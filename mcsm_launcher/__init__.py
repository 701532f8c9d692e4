"""MCSManager launcher: runs the web and daemon processes as a pair.

Forwards termination signals to both processes, cross-kills the survivor
when one of them exits on its own, and writes a combined timestamped log.

Run with:
    python -m mcsm_launcher
"""

from mcsm_launcher.config import Config
from mcsm_launcher.supervisor import Supervisor

__all__ = ["Config", "Supervisor"]
