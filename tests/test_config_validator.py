import unittest

from settings_dashboard.config_validator import ConfigValidator, contains_emoji, is_emoji
from settings_dashboard.dashboard_contracts import (
    CategoryDef,
    DashboardConfigError,
    DashboardOptions,
    SettingDef,
    SettingKind,
)


def _fetch():
    return None


def _save(value):
    return None


def _setting(name="Nickname", **kwargs):
    kind = kwargs.pop("kind", "textinput")
    return SettingDef(name=name, kind=kind, fetch=_fetch, save=_save, **kwargs)


def _category(name="General", settings=None, **kwargs):
    description = kwargs.pop("description", "General behaviour.")
    return CategoryDef(
        name=name,
        description=description,
        settings=tuple(settings if settings is not None else [_setting()]),
        **kwargs,
    )


class TestConfigValidator(unittest.TestCase):
    def setUp(self):
        self.validator = ConfigValidator()

    def assertRejected(self, categories, fragment, options=None):
        result = self.validator.validate(categories, options)
        self.assertFalse(result.ok)
        self.assertIn(fragment, result.reason)

    def test_valid_configuration_passes(self):
        categories = [
            _category(emoji="⚙️", reset=lambda: None),
            _category(
                "Moderation",
                [
                    _setting("LogChannel", required=True, max_length=100),
                    _setting("Rules", kind="textarea", description="Shown by /rules.", min_length=1, max_length=4000),
                ],
                emoji="🛡️",
            ),
        ]
        result = self.validator.validate(categories, DashboardOptions())
        self.assertTrue(result)
        self.validator.ensure_valid(categories)

    def test_no_categories(self):
        self.assertRejected([], "No categories have been provided.")

    def test_too_many_categories(self):
        categories = [_category(f"Category {index}") for index in range(26)]
        self.assertRejected(categories, "Cannot have more than 25 categories.")

    def test_twenty_five_categories_are_allowed(self):
        categories = [_category(f"Category {index}") for index in range(25)]
        self.assertTrue(self.validator.validate(categories))

    def test_duplicate_category_names_ignore_case(self):
        self.assertRejected([_category("General"), _category("general")], "used more than once")

    def test_category_name_rules(self):
        self.assertRejected([_category("")], "missing names")
        self.assertRejected([_category("Bad_Name")], "underscore")
        self.assertRejected([_category("Fun 🎉")], "contains emoji")
        self.assertRejected([_category("x" * 41)], "longer than 40")
        self.assertTrue(self.validator.validate([_category("x" * 40)]))

    def test_category_needs_description(self):
        self.assertRejected([_category(description="")], "missing a description")

    def test_category_emoji_must_be_an_emoji(self):
        self.assertRejected([_category(emoji="gear")], "invalid emoji")

    def test_reset_must_be_callable(self):
        self.assertRejected([_category(reset="clear everything")], "not callable")

    def test_settings_per_category(self):
        self.assertRejected([_category(settings=[])], "has no settings")
        too_many = [_setting(f"Setting{index}") for index in range(6)]
        self.assertRejected([_category(settings=too_many)], "more than 5 settings")

    def test_duplicate_setting_names_ignore_case(self):
        settings = [_setting("Nickname"), _setting("NICKNAME")]
        self.assertRejected([_category(settings=settings)], "duplicate setting")

    def test_setting_name_and_description_rules(self):
        self.assertRejected([_category(settings=[_setting("log_channel")])], "underscore")
        self.assertRejected([_category(settings=[_setting("y" * 41)])], "longer than 40")
        self.assertRejected(
            [_category(settings=[_setting(description="line one\nline two")])],
            "containing a newline",
        )

    def test_setting_kind_must_be_known(self):
        self.assertRejected([_category(settings=[_setting(kind="dropdown")])], "Unknown setting type")
        self.assertEqual(SettingKind.parse("TextArea"), SettingKind.MULTI_LINE)

    def test_required_must_be_boolean(self):
        self.assertRejected([_category(settings=[_setting(required="yes")])], "not a boolean")

    def test_length_bounds(self):
        self.assertRejected([_category(settings=[_setting(min_length=0)])], "minLength less than or equal to 0")
        self.assertRejected([_category(settings=[_setting(max_length=4001)])], "maxLength greater than 4000")
        self.assertRejected([_category(settings=[_setting(max_length=2.5)])], "not an integer")
        self.assertRejected(
            [_category(settings=[_setting(min_length=10, max_length=5)])],
            "maxLength less than its minLength",
        )

    def test_capabilities_must_be_callable(self):
        setting = SettingDef(name="Nickname", kind="textinput", fetch=None, save=_save)
        self.assertRejected([_category(settings=[setting])], "missing a fetch function")
        setting = SettingDef(name="Nickname", kind="textinput", fetch=_fetch, save="nope")
        self.assertRejected([_category(settings=[setting])], "missing a save function")

    def test_timeouts_must_be_positive(self):
        self.assertRejected([_category()], "idle_timeout_ms", DashboardOptions(idle_timeout_ms=0))
        self.assertRejected([_category()], "form_timeout_ms", DashboardOptions(form_timeout_ms=-1))

    def test_ensure_valid_raises_config_error(self):
        with self.assertRaises(DashboardConfigError) as caught:
            self.validator.ensure_valid([])
        self.assertIn("No categories", str(caught.exception))

    def test_emoji_helpers(self):
        self.assertTrue(is_emoji("⚙️"))
        self.assertTrue(is_emoji("🇯🇵"))
        self.assertTrue(is_emoji("👍🏽"))
        self.assertFalse(is_emoji("ok"))
        self.assertFalse(is_emoji(""))
        self.assertTrue(contains_emoji("Party 🎉"))
        self.assertFalse(contains_emoji("Moderation"))


if __name__ == "__main__":
    unittest.main()
