"""megabot: personal-assistant runtime with a tool-call loop, detached streams and background agents.

Usage:
    from megabot import MegabotApp, Settings

    app = MegabotApp(Settings.load())
    await app.initialize()
    response = await app.chat.handle(None, "What time is it?")
    async for chunk in response.stream:
        ...
"""

__version__ = "0.1.0"

from .config.settings import Settings
from .core.app import MegabotApp

__all__ = ["MegabotApp", "Settings"]
