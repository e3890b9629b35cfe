from .settings import DEFAULT_JWT_SECRET, Settings, get_settings, load_settings

__all__ = ["DEFAULT_JWT_SECRET", "Settings", "get_settings", "load_settings"]
