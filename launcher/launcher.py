#!/usr/bin/env python3
"""
Dedicated Game Server Launcher
Installs/updates a SteamCMD game server, runs it and restarts it when unhealthy.

    python launcher.py run --config appsettings.json
"""

import sys

from gameserver_launcher.cli import main


if __name__ == "__main__":
    sys.exit(main())
