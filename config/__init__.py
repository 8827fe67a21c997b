"""Configuration package utilities."""

__all__ = ["ConfigController", "NetBirdSettings", "load_settings"]


def load_settings():
    """Load YAML configuration and return the immutable settings struct."""

    from config.controller import ConfigController
    from config.settings import NetBirdSettings

    return NetBirdSettings.from_config(ConfigController.get_instance().get_config())


def __getattr__(name: str):
    if name == "ConfigController":
        from config.controller import ConfigController

        return ConfigController
    if name == "NetBirdSettings":
        from config.settings import NetBirdSettings

        return NetBirdSettings
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
