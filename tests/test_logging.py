"""Tests for structlog setup and context binding."""

import logging

import structlog

from src.enrollment.logging import enrollment_context, setup_logging


class TestEnrollmentContext:
    def test_binds_and_restores_ids(self):
        structlog.contextvars.clear_contextvars()

        with enrollment_context("lesson-1", "student-1"):
            assert structlog.contextvars.get_contextvars() == {
                "lesson_id": "lesson-1",
                "student_id": "student-1",
            }

        assert structlog.contextvars.get_contextvars() == {}

    def test_lesson_only(self):
        structlog.contextvars.clear_contextvars()
        with enrollment_context("lesson-1"):
            assert structlog.contextvars.get_contextvars() == {"lesson_id": "lesson-1"}


class TestSetupLogging:
    def teardown_method(self):
        structlog.reset_defaults()
        structlog.contextvars.clear_contextvars()

    def test_service_name_is_bound(self):
        setup_logging(service_name="svc")
        assert structlog.contextvars.get_contextvars() == {"service": "svc"}

    def test_json_output_goes_to_stderr(self, capsys):
        setup_logging(json_output=True, log_level="INFO", service_name="svc")
        structlog.get_logger("t").info("enrollment_completed", lesson_id="L1")

        captured = capsys.readouterr()
        assert captured.out == ""
        assert '"event": "enrollment_completed"' in captured.err
        assert '"service": "svc"' in captured.err

    def test_level_filtering_and_quiet_third_party_loggers(self):
        setup_logging(log_level="debug")

        assert logging.getLogger().level == logging.DEBUG
        assert logging.getLogger("tenacity").level == logging.WARNING

    def test_unknown_level_falls_back_to_info(self):
        setup_logging(log_level="chatty")
        assert logging.getLogger().level == logging.INFO
