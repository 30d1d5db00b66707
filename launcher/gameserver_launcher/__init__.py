"""
gameserver_launcher package
---------------------------
Supervisor for a single SteamCMD-installed dedicated game server.
Contains modules for configuration, SteamCMD integration, process
supervision, health evaluation, logging and the monitoring control loop.
"""

__version__ = "0.1.0"
