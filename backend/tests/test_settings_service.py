import unittest
from decimal import Decimal

from storedesk import create_app
from storedesk.extensions import db
from storedesk.models import SystemSetting
from storedesk.services import settings_service
from storedesk.services.settings_service import SettingsError


class SettingsServiceTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls.app = create_app({
            "SECRET_KEY": "test",
            "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:",
            "SQLALCHEMY_TRACK_MODIFICATIONS": False,
            "TESTING": True,
            "company_name": "Config Co",
        })
        cls.ctx = cls.app.app_context()
        cls.ctx.push()
        db.create_all()

    @classmethod
    def tearDownClass(cls):
        db.session.remove()
        db.drop_all()
        cls.ctx.pop()

    def setUp(self):
        db.session.query(SystemSetting).delete()
        db.session.commit()

    def _store(self, key, value):
        settings_service.set_setting(key, value)
        db.session.commit()

    def test_builtin_default(self):
        self.assertEqual(settings_service.get_setting(settings_service.TAX_RATE), "12.5")
        self.assertIsNone(settings_service.get_setting("UNKNOWN_KEY"))
        self.assertEqual(settings_service.get_setting("UNKNOWN_KEY", "fallback"), "fallback")

    def test_config_beats_default(self):
        self.assertEqual(settings_service.get_setting(settings_service.COMPANY_NAME), "Config Co")

    def test_database_beats_config(self):
        self._store(settings_service.COMPANY_NAME, "Row Co")
        self.assertEqual(settings_service.get_setting(settings_service.COMPANY_NAME), "Row Co")

    def test_blank_row_counts_as_unset(self):
        self._store(settings_service.COMPANY_NAME, "")
        self.assertEqual(settings_service.get_setting(settings_service.COMPANY_NAME), "Config Co")

    def test_set_setting_upserts(self):
        self._store(settings_service.TAX_RATE, 10)
        self._store(settings_service.TAX_RATE, "7.5")

        rows = db.session.query(SystemSetting).filter_by(key=settings_service.TAX_RATE).all()
        self.assertEqual(len(rows), 1)
        self.assertEqual(rows[0].value, "7.5")

    def test_blank_key_rejected(self):
        with self.assertRaises(SettingsError):
            settings_service.set_setting("  ", "x")

    def test_get_bool(self):
        self.assertFalse(settings_service.get_bool(settings_service.SEND_ABANDONED_CART_REMINDERS))
        self.assertTrue(settings_service.get_bool(settings_service.SEND_ORDER_CONFIRMATION))
        self._store(settings_service.SEND_ABANDONED_CART_REMINDERS, "TRUE")
        self.assertTrue(settings_service.get_bool(settings_service.SEND_ABANDONED_CART_REMINDERS))
        self._store(settings_service.SEND_ABANDONED_CART_REMINDERS, "yes")
        self.assertFalse(settings_service.get_bool(settings_service.SEND_ABANDONED_CART_REMINDERS))

    def test_get_int(self):
        self.assertEqual(settings_service.get_int(settings_service.ABANDONED_CART_DELAY_HOURS, 1), 24)
        self._store(settings_service.ABANDONED_CART_DELAY_HOURS, "soon")
        self.assertEqual(settings_service.get_int(settings_service.ABANDONED_CART_DELAY_HOURS, 1), 1)

    def test_get_percentage(self):
        self.assertEqual(settings_service.get_percentage(settings_service.RETURN_TAX_RATE), Decimal("15"))
        self._store(settings_service.RETURN_TAX_RATE, "-3")
        self.assertEqual(settings_service.get_percentage(settings_service.RETURN_TAX_RATE), Decimal("15"))
        self._store(settings_service.TAX_RATE, "abc")
        self.assertEqual(settings_service.get_percentage(settings_service.TAX_RATE), Decimal("12.5"))

    def test_list_settings_masks_secrets(self):
        self._store(settings_service.PAYSTACK_SECRET_KEY, "sk_live_123")
        self._store("SMTP_PASSWORD", "hunter2")
        self._store(settings_service.COMPANY_NAME, "Row Co")

        masked = settings_service.list_settings()
        self.assertEqual(masked[settings_service.PAYSTACK_SECRET_KEY], "********")
        self.assertEqual(masked["SMTP_PASSWORD"], "********")
        self.assertEqual(masked[settings_service.COMPANY_NAME], "Row Co")

        raw = settings_service.list_settings(mask_secrets=False)
        self.assertEqual(raw[settings_service.PAYSTACK_SECRET_KEY], "sk_live_123")


if __name__ == "__main__":
    unittest.main()
