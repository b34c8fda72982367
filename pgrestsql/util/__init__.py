from .query_settings import QuerySettings
from .settings_dict import RestQuerySettingsDict
