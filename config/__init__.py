from config.settings import settings, Settings, IS_PRODUCTION

__all__ = ["settings", "Settings", "IS_PRODUCTION"]
