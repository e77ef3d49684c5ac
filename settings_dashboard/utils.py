##########################################################################
#                                                                        #
#  This file (utils.py) contains the utility modules for the settings    #
#  dashboard: console logging, bot configuration and the PostgreSQL      #
#  store behind each chat's settings.                                    #
#                                                                        #
##########################################################################


###########
# IMPORTS #
###########

import asyncio
import json
import logging
import psycopg
from datetime import datetime, timezone
from pathlib import Path
from psycopg.rows import dict_row

from settings_dashboard.dashboard_contracts import CategoryDef, SettingDef
from settings_dashboard.runtime_settings import (
    build_runtime_settings,
    get_runtime_setting,
    load_dotenv_file,
)



###########
# GLOBALS #
###########

# Create a custom formatter sub class for adding colored outputs
class CustomFormatter(logging.Formatter):
    """Creates a custom formatter for the logging library."""
    grey = "\x1b[38;20m"
    yellow = "\x1b[33;20m"
    red = "\x1b[31;20m"
    bold_red = "\x1b[31;1m"
    reset = "\x1b[0m"
    format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s (%(filename)s:%(lineno)d)"

    FORMATS = {
        logging.DEBUG: grey + format + reset,
        logging.INFO: grey + format + reset,
        logging.WARNING: yellow + format + reset,
        logging.ERROR: red + format + reset,
        logging.CRITICAL: bold_red + format + reset
    }

    def format(self, record):
        log_fmt = self.FORMATS.get(record.levelno)
        formatter = logging.Formatter(log_fmt)
        return formatter.format(record)


logger = logging.getLogger(__name__)



##################
# CONFIG MANAGER #
##################

def buildConninfo(database: dict | None) -> str | None:
    if not isinstance(database, dict):
        return None
    required = (database.get("db_name"), database.get("user"), database.get("password"), database.get("host"))
    if any(not item for item in required):
        return None
    conninfo = f"dbname={database.get('db_name')} user={database.get('user')} password={database.get('password')} host={database.get('host')}"
    if database.get("port"):
        conninfo = conninfo + f" port={database.get('port')}"
    return conninfo


class ConfigManager:
    _instance = None

    def __new__(cls, configPath: str = "config.json", envPath: str = ".env"):
        if cls._instance is None:
            cls._instance = super(ConfigManager, cls).__new__(cls)
            load_dotenv_file(envPath)
            # Open the config file
            with open(configPath, "r", encoding="utf-8") as f:
                config_json = json.load(f)
            database = config_json.get("database")

            cls._instance.bot_name = config_json.get("bot_name")
            cls._instance.bot_token = config_json.get("bot_token")
            cls._instance.database = database
            cls._instance.db_conninfo = buildConninfo(database)
            cls._instance.runtime = build_runtime_settings(config_data=config_json)

        return cls._instance

    # Define getters

    @property
    def botName(self):
        return self._instance.bot_name

    def runtimeSetting(self, path: str, default=None):
        return get_runtime_setting(self._instance.runtime, path, default)



#########################
# CHAT SETTINGS MANAGER #
#########################

class ChatSettingsManager:
    """Per-chat setting values stored in PostgreSQL.

    fetchSetting returns None for a setting that was never saved, which the
    dashboard shows as unconfigured.
    """

    def __init__(self, conninfo: str, connectTimeout: int = 2):
        self._conninfo = conninfo
        self._connectTimeout = connectTimeout
        self._tableReady = False

    def _connect(self):
        return psycopg.connect(conninfo=self._conninfo, connect_timeout=self._connectTimeout, row_factory=dict_row)

    def ensureTable(self) -> None:
        if self._tableReady:
            return
        connection = None
        try:
            connection = self._connect()
            cursor = connection.cursor()
            chatSettings_sql = """CREATE TABLE IF NOT EXISTS chat_settings (
                chat_id BIGINT NOT NULL,
                setting_key VARCHAR(96) NOT NULL,
                setting_value TEXT,
                updated_at TIMESTAMPTZ NOT NULL,
                PRIMARY KEY (chat_id, setting_key)
            );"""
            cursor.execute(chatSettings_sql)
            connection.commit()
            cursor.close()
            self._tableReady = True
        finally:
            if connection is not None:
                connection.close()

    def fetchSetting(self, chatID: int, settingKey: str) -> str | None:
        self.ensureTable()
        connection = None
        try:
            connection = self._connect()
            cursor = connection.cursor()
            cursor.execute(
                "SELECT setting_value FROM chat_settings WHERE chat_id = %s AND setting_key = %s;",
                (chatID, settingKey)
            )
            row = cursor.fetchone()
            cursor.close()
            return None if row is None else row.get("setting_value")
        finally:
            if connection is not None:
                connection.close()

    def saveSetting(self, chatID: int, settingKey: str, value: str) -> None:
        self.ensureTable()
        connection = None
        try:
            connection = self._connect()
            cursor = connection.cursor()
            cursor.execute(
                """INSERT INTO chat_settings (chat_id, setting_key, setting_value, updated_at)
                VALUES (%s, %s, %s, %s)
                ON CONFLICT (chat_id, setting_key)
                DO UPDATE SET setting_value = EXCLUDED.setting_value, updated_at = EXCLUDED.updated_at;""",
                (chatID, settingKey, value, datetime.now(timezone.utc))
            )
            connection.commit()
            cursor.close()
            logger.debug(f"Saved setting {settingKey} for chat {chatID}.")
        finally:
            if connection is not None:
                connection.close()

    def clearSettings(self, chatID: int, settingKeys: list[str]) -> int:
        self.ensureTable()
        connection = None
        try:
            connection = self._connect()
            cursor = connection.cursor()
            cursor.execute(
                "DELETE FROM chat_settings WHERE chat_id = %s AND setting_key = ANY(%s);",
                (chatID, list(settingKeys))
            )
            deleted = cursor.rowcount
            connection.commit()
            cursor.close()
            logger.info(f"Reset {deleted} setting(s) for chat {chatID}.")
            return deleted
        finally:
            if connection is not None:
                connection.close()

    def capabilities(self, chatID: int, settingKey: str) -> tuple:
        """fetch and save coroutines bound to one chat and setting.

        The queries run in a worker thread so a slow database never blocks the
        bot's event loop.
        """
        async def fetch():
            return await asyncio.to_thread(self.fetchSetting, chatID, settingKey)

        async def save(value: str):
            await asyncio.to_thread(self.saveSetting, chatID, settingKey, value)

        return fetch, save

    def resetAction(self, chatID: int, settingKeys: list[str]):
        async def reset():
            await asyncio.to_thread(self.clearSettings, chatID, settingKeys)

        return reset


def loadLayout(path: str | Path) -> list:
    """Read a settings layout (categories and their settings) from a JSON file."""
    with open(path, "r", encoding="utf-8") as f:
        layout = json.load(f)
    if isinstance(layout, dict):
        layout = layout.get("categories", [])
    if not isinstance(layout, list):
        return []
    return layout


DEFAULT_LAYOUT = [
    {
        "name": "General",
        "description": "General bot behaviour in this chat.",
        "emoji": "⚙️",
        "reset": True,
        "settings": [
            {"key": "nickname", "name": "Nickname", "type": "textinput", "description": "What the bot calls itself here.", "max_length": 32},
            {"key": "welcome_message", "name": "WelcomeMessage", "type": "textarea", "description": "Sent when a new member joins.", "max_length": 1000},
        ],
    },
    {
        "name": "Moderation",
        "description": "Where moderation logs go and the rules members agree to.",
        "emoji": "🛡️",
        "reset": True,
        "settings": [
            {"key": "log_channel", "name": "LogChannel", "type": "textinput", "required": True, "max_length": 100},
            {"key": "rules", "name": "Rules", "type": "textarea", "description": "Shown by the /rules command."},
        ],
    },
]


def buildCategories(layout: list, store: ChatSettingsManager, chatID: int) -> list[CategoryDef]:
    """Bind a layout to one chat's stored values."""
    categories = []
    for categoryData in layout:
        settings = []
        settingKeys = []
        for settingData in categoryData.get("settings", []):
            settingKey = settingData.get("key") or str(settingData.get("name", "")).lower()
            settingKeys.append(settingKey)
            fetch, save = store.capabilities(chatID, settingKey)
            settings.append(
                SettingDef(
                    name=settingData.get("name"),
                    kind=settingData.get("type", "textinput"),
                    fetch=fetch,
                    save=save,
                    description=settingData.get("description"),
                    min_length=settingData.get("min_length"),
                    max_length=settingData.get("max_length"),
                    required=settingData.get("required", False),
                )
            )
        categories.append(
            CategoryDef(
                name=categoryData.get("name"),
                description=categoryData.get("description"),
                settings=tuple(settings),
                emoji=categoryData.get("emoji"),
                reset=store.resetAction(chatID, settingKeys) if categoryData.get("reset") else None,
            )
        )
    return categories
