from family_chat.config.settings import Settings, settings

__all__ = ["Settings", "settings"]
