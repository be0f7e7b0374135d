"""
Tests for logging configuration.
"""
import logging

import shop_bot.config as config_mod


class TestLoggingConfiguration:
    """Test logging setup and configuration."""

    def test_setup_logging_default_level(self, monkeypatch):
        """Test that setup_logging defaults to INFO level."""
        monkeypatch.setattr(config_mod, "LOG_LEVEL", "INFO")

        from shop_bot.logging_config import setup_logging
        setup_logging()

        logger = logging.getLogger("shop_bot")
        assert logger.level <= logging.INFO

    def test_setup_logging_reads_configured_level(self, monkeypatch):
        """Test that config.LOG_LEVEL is respected."""
        monkeypatch.setattr(config_mod, "LOG_LEVEL", "warning")

        from shop_bot.logging_config import setup_logging
        setup_logging()

        logger = logging.getLogger("shop_bot")
        assert logger.level == logging.WARNING

    def test_explicit_level_overrides_config(self, monkeypatch):
        monkeypatch.setattr(config_mod, "LOG_LEVEL", "WARNING")

        from shop_bot.logging_config import setup_logging
        setup_logging(level="DEBUG")

        assert logging.getLogger("shop_bot").level == logging.DEBUG

    def test_setup_logging_invalid_level_defaults_to_info(self):
        """Test that invalid level falls back to INFO."""
        from shop_bot.logging_config import setup_logging
        setup_logging(level="INVALID_LEVEL")

        logger = logging.getLogger("shop_bot")
        assert logger.level == logging.INFO

    def test_third_party_loggers_are_quiet_unless_debugging(self):
        from shop_bot.logging_config import setup_logging

        setup_logging(level="INFO")
        for name in ("instructor", "openai", "slowapi", "sqlalchemy.engine"):
            assert logging.getLogger(name).level == logging.WARNING

        setup_logging(level="DEBUG")
        for name in ("instructor", "openai", "slowapi", "sqlalchemy.engine"):
            assert logging.getLogger(name).level == logging.NOTSET

        setup_logging(level="INFO")

    def test_debug_logs_not_shown_at_info_level(self, caplog):
        """Test that DEBUG logs don't appear when level is INFO."""
        from shop_bot.logging_config import setup_logging
        setup_logging(level="INFO")

        with caplog.at_level(logging.INFO):
            logger = logging.getLogger("shop_bot.test")
            logger.debug("This should not appear")
            logger.info("This should appear")

            messages = [r.message for r in caplog.records]
            assert "This should not appear" not in messages
            assert "This should appear" in messages


class TestNoSensitiveDataInLogs:
    """Customer phone numbers are masked before they reach the logs."""

    def test_mask_phone_keeps_last_four_digits(self):
        from shop_bot.logging_config import mask_phone
        assert mask_phone("+221771234567") == "********4567"

    def test_mask_phone_handles_missing_and_short_values(self):
        from shop_bot.logging_config import mask_phone
        assert mask_phone(None) == "<none>"
        assert mask_phone("123") == "****"

    def test_filter_masks_numbers_in_messages(self):
        from shop_bot.logging_config import PhoneMaskingFilter

        record = logging.LogRecord(
            "shop_bot.test", logging.INFO, __file__, 1, "Returning customer %s", ("+221 77 123 45 67",), None,
        )
        assert PhoneMaskingFilter().filter(record) is True
        assert record.getMessage() == "Returning customer ********4567"

    def test_filter_leaves_order_ids_and_amounts_alone(self):
        from shop_bot.logging_config import PhoneMaskingFilter

        record = logging.LogRecord(
            "shop_bot.test", logging.INFO, __file__, 1, "Order %s created for %d FCFA", ("ORD-1234-5678", 16000), None,
        )
        PhoneMaskingFilter().filter(record)
        assert record.getMessage() == "Order ORD-1234-5678 created for 16000 FCFA"

    def test_rejected_phone_is_not_logged_in_clear(self, caplog):
        from shop_bot.flow.validators import PhoneValidator

        with caplog.at_level(logging.DEBUG, logger="shop_bot"):
            PhoneValidator().validate("77 123 45 67")

        for record in caplog.records:
            assert "771234567" not in record.getMessage()
