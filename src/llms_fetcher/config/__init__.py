from llms_fetcher.config.loader import YamlConfigLoader
from llms_fetcher.config.models import AppConfig, ConfigLoadRequest, FetcherSettings, ScheduleSettings

__all__ = ["AppConfig", "ConfigLoadRequest", "FetcherSettings", "ScheduleSettings", "YamlConfigLoader"]
