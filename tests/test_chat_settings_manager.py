import json
import tempfile
import threading
import unittest
from pathlib import Path

from settings_dashboard import utils
from settings_dashboard.config_validator import ConfigValidator
from settings_dashboard.dashboard_contracts import SettingKind


class _FakeCursor:
    def __init__(self, database):
        self._database = database
        self._row = None
        self.rowcount = 0

    def execute(self, sql, params=None):
        self._database.statements.append((" ".join(sql.split()), params))
        if sql.startswith("SELECT"):
            chatID, settingKey = params
            value = self._database.rows.get((chatID, settingKey))
            self._row = None if value is None else {"setting_value": value}
        elif sql.startswith("INSERT"):
            chatID, settingKey, value, _ = params
            self._database.rows[(chatID, settingKey)] = value
        elif sql.startswith("DELETE"):
            chatID, settingKeys = params
            doomed = [key for key in self._database.rows if key[0] == chatID and key[1] in settingKeys]
            for key in doomed:
                del self._database.rows[key]
            self.rowcount = len(doomed)

    def fetchone(self):
        return self._row

    def close(self):
        return None


class _FakeConnection:
    def __init__(self, database):
        self._database = database

    def cursor(self):
        return _FakeCursor(self._database)

    def commit(self):
        self._database.commits += 1

    def close(self):
        self._database.closed += 1


class _FakeDatabase:
    def __init__(self):
        self.rows = {}
        self.statements = []
        self.commits = 0
        self.closed = 0
        self.connects = []


class TestChatSettingsManager(unittest.TestCase):
    def setUp(self):
        self._original_connect = utils.psycopg.connect
        self.database = _FakeDatabase()

        def fake_connect(*, conninfo, connect_timeout, row_factory):
            self.database.connects.append((conninfo, connect_timeout))
            return _FakeConnection(self.database)

        utils.psycopg.connect = fake_connect
        self.manager = utils.ChatSettingsManager("dbname=test", connectTimeout=3)

    def tearDown(self):
        utils.psycopg.connect = self._original_connect

    def test_missing_setting_reads_as_none(self):
        self.assertIsNone(self.manager.fetchSetting(10, "nickname"))
        self.assertEqual(self.database.connects[0], ("dbname=test", 3))
        self.assertTrue(self.database.statements[0][0].startswith("CREATE TABLE IF NOT EXISTS chat_settings"))

    def test_save_then_fetch(self):
        self.manager.saveSetting(10, "nickname", "ryo")
        self.manager.saveSetting(10, "nickname", "ryo2")
        self.assertEqual(self.manager.fetchSetting(10, "nickname"), "ryo2")
        self.assertIsNone(self.manager.fetchSetting(11, "nickname"))

    def test_table_is_created_once(self):
        self.manager.fetchSetting(10, "nickname")
        self.manager.fetchSetting(10, "rules")
        creates = [sql for sql, _ in self.database.statements if sql.startswith("CREATE TABLE")]
        self.assertEqual(len(creates), 1)

    def test_clear_settings_only_touches_named_keys(self):
        self.manager.saveSetting(10, "nickname", "ryo")
        self.manager.saveSetting(10, "rules", "be nice")
        self.manager.saveSetting(20, "nickname", "other")

        deleted = self.manager.clearSettings(10, ["nickname", "welcome_message"])

        self.assertEqual(deleted, 1)
        self.assertEqual(self.database.rows, {(10, "rules"): "be nice", (20, "nickname"): "other"})

    def test_connections_are_closed_when_queries_fail(self):
        def broken_connect(*, conninfo, connect_timeout, row_factory):
            raise RuntimeError("connection refused")

        utils.psycopg.connect = broken_connect
        with self.assertRaises(RuntimeError):
            self.manager.fetchSetting(10, "nickname")

        utils.psycopg.connect = lambda **kwargs: _FakeConnection(self.database)
        self.manager.saveSetting(10, "nickname", "ryo")
        self.assertEqual(self.database.closed, 2)


class TestChatSettingsCapabilities(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self._original_connect = utils.psycopg.connect
        self.database = _FakeDatabase()
        self.queryThreads = []

        def fake_connect(*, conninfo, connect_timeout, row_factory):
            self.queryThreads.append(threading.get_ident())
            return _FakeConnection(self.database)

        utils.psycopg.connect = fake_connect
        self.manager = utils.ChatSettingsManager("dbname=test")

    async def asyncTearDown(self):
        utils.psycopg.connect = self._original_connect

    async def test_capabilities_are_bound_to_chat_and_key(self):
        fetch, save = self.manager.capabilities(10, "log_channel")
        self.assertIsNone(await fetch())
        await save("#mod-log")
        self.assertEqual(await fetch(), "#mod-log")
        self.assertEqual(self.database.rows, {(10, "log_channel"): "#mod-log"})

        reset = self.manager.resetAction(10, ["log_channel"])
        await reset()
        self.assertIsNone(await fetch())

    async def test_queries_run_off_the_event_loop_thread(self):
        fetch, save = self.manager.capabilities(10, "nickname")
        await save("ryo")
        await fetch()
        await self.manager.resetAction(10, ["nickname"])()

        self.assertEqual(len(self.queryThreads), 3)
        self.assertNotIn(threading.get_ident(), self.queryThreads)


class TestLayouts(unittest.TestCase):
    def test_default_layout_builds_valid_categories(self):
        manager = utils.ChatSettingsManager("dbname=test")
        categories = utils.buildCategories(utils.DEFAULT_LAYOUT, manager, 10)

        self.assertEqual([category.name for category in categories], ["General", "Moderation"])
        logChannel = categories[1].settings[0]
        self.assertEqual(logChannel.name, "LogChannel")
        self.assertTrue(logChannel.required)
        self.assertEqual(SettingKind.parse(categories[0].settings[1].kind), SettingKind.MULTI_LINE)
        self.assertTrue(all(category.can_reset for category in categories))
        self.assertTrue(ConfigValidator().validate(categories))

    def test_load_layout_accepts_list_or_categories_key(self):
        layout = [{"name": "Alerts", "description": "Alert routing.", "settings": [{"name": "Channel"}]}]
        with tempfile.TemporaryDirectory() as tmp_dir:
            listPath = Path(tmp_dir) / "list.json"
            listPath.write_text(json.dumps(layout), encoding="utf-8")
            wrappedPath = Path(tmp_dir) / "wrapped.json"
            wrappedPath.write_text(json.dumps({"categories": layout}), encoding="utf-8")

            self.assertEqual(utils.loadLayout(listPath), layout)
            self.assertEqual(utils.loadLayout(wrappedPath), layout)

    def test_setting_key_defaults_to_lowercase_name(self):
        manager = utils.ChatSettingsManager("dbname=test")
        layout = [{"name": "Alerts", "description": "Alert routing.", "settings": [{"name": "Channel"}]}]
        categories = utils.buildCategories(layout, manager, 10)

        self.assertFalse(categories[0].can_reset)
        self.assertEqual(categories[0].settings[0].kind, "textinput")


class TestConfigManager(unittest.TestCase):
    def setUp(self):
        utils.ConfigManager._instance = None

    def tearDown(self):
        utils.ConfigManager._instance = None

    def test_build_conninfo(self):
        self.assertIsNone(utils.buildConninfo(None))
        self.assertIsNone(utils.buildConninfo({"db_name": "ryo", "user": "u"}))
        self.assertEqual(
            utils.buildConninfo({"db_name": "ryo", "user": "u", "password": "p", "host": "db", "port": 5433}),
            "dbname=ryo user=u password=p host=db port=5433",
        )

    def test_config_manager_reads_config_and_runtime(self):
        with tempfile.TemporaryDirectory() as tmp_dir:
            configPath = Path(tmp_dir) / "config.json"
            configPath.write_text(
                json.dumps({
                    "bot_name": "Ryo",
                    "bot_token": "123:abc",
                    "database": {"db_name": "ryo", "user": "u", "password": "p", "host": "db"},
                    "runtime": {"dashboard": {"form_timeout_ms": 120000}},
                }),
                encoding="utf-8",
            )
            config = utils.ConfigManager(configPath=str(configPath), envPath=str(Path(tmp_dir) / ".env"))

        self.assertEqual(config.botName, "Ryo")
        self.assertEqual(config.bot_token, "123:abc")
        self.assertEqual(config.db_conninfo, "dbname=ryo user=u password=p host=db")
        self.assertEqual(config.runtimeSetting("dashboard.form_timeout_ms"), 120000)
        self.assertIs(utils.ConfigManager(), config)


if __name__ == "__main__":
    unittest.main()
