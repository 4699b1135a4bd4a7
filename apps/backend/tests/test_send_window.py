import sys
import unittest
from datetime import datetime, timezone
from pathlib import Path

sys.path.append(str(Path(__file__).resolve().parents[1] / "src"))

from leadflow.workflow.schema import SendWindow
from leadflow.workflow.send_window import civil_weekday, hhmm_to_minutes, is_within_send_window


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


# 2024-01-01 is a Monday; Brussels is UTC+1 in January, New York UTC-5
MONDAY = (2024, 1, 1)
SATURDAY = (2024, 1, 6)


class HelperTests(unittest.TestCase):
    def test_hhmm_to_minutes(self):
        self.assertEqual(hhmm_to_minutes("00:00"), 0)
        self.assertEqual(hhmm_to_minutes("09:30"), 570)
        self.assertEqual(hhmm_to_minutes("23:59"), 1439)
        for bad in (None, "", "9:00", "24:00", "12:60", "noon", "09:00:00"):
            self.assertIsNone(hhmm_to_minutes(bad), bad)

    def test_civil_weekday_counts_from_sunday(self):
        self.assertEqual(civil_weekday(utc(2024, 1, 7)), 0)
        self.assertEqual(civil_weekday(utc(*MONDAY)), 1)
        self.assertEqual(civil_weekday(utc(*SATURDAY)), 6)


class SendWindowPolicyTests(unittest.TestCase):
    def setUp(self) -> None:
        self.office_hours = SendWindow(enabled=True, start_time="09:00", end_time="17:00", allowed_days=[1, 2, 3, 4, 5])

    def test_absent_or_disabled_window_always_allows(self):
        self.assertTrue(is_within_send_window(None, utc(*SATURDAY, 3, 0)))
        disabled = self.office_hours.model_copy(update={"enabled": False})
        self.assertTrue(is_within_send_window(disabled, utc(*SATURDAY, 3, 0)))

    def test_same_day_window_in_default_timezone(self):
        self.assertTrue(is_within_send_window(self.office_hours, utc(*MONDAY, 10, 0)))
        # Bounds are inclusive: 08:00Z is 09:00 and 16:00Z is 17:00 in Brussels
        self.assertTrue(is_within_send_window(self.office_hours, utc(*MONDAY, 8, 0)))
        self.assertTrue(is_within_send_window(self.office_hours, utc(*MONDAY, 16, 0)))
        self.assertFalse(is_within_send_window(self.office_hours, utc(*MONDAY, 7, 59)))
        self.assertFalse(is_within_send_window(self.office_hours, utc(*MONDAY, 16, 30)))

    def test_weekend_is_rejected(self):
        self.assertFalse(is_within_send_window(self.office_hours, utc(*SATURDAY, 10, 0)))

    def test_explicit_timezone(self):
        window = self.office_hours.model_copy(update={"timezone": "America/New_York"})
        self.assertTrue(is_within_send_window(window, utc(*MONDAY, 15, 0)))
        self.assertFalse(is_within_send_window(window, utc(*MONDAY, 10, 0)))

    def test_weekday_is_taken_in_window_timezone(self):
        # Saturday 03:00Z is Friday 22:00 in New York but Saturday 04:00 in Brussels
        evening = SendWindow(enabled=True, start_time="20:00", end_time="23:00", allowed_days=[5])
        moment = utc(*SATURDAY, 3, 0)
        self.assertTrue(is_within_send_window(evening.model_copy(update={"timezone": "America/New_York"}), moment))
        self.assertFalse(is_within_send_window(evening, moment))

    def test_overnight_window_wraps_midnight(self):
        overnight = SendWindow(enabled=True, start_time="22:00", end_time="06:00", allowed_days=[])
        self.assertTrue(is_within_send_window(overnight, utc(*MONDAY, 22, 30)))
        self.assertTrue(is_within_send_window(overnight, utc(*MONDAY, 4, 0)))
        self.assertFalse(is_within_send_window(overnight, utc(*MONDAY, 12, 0)))

    def test_equal_start_and_end_is_always_open(self):
        window = SendWindow(enabled=True, start_time="10:00", end_time="10:00", allowed_days=[1])
        self.assertTrue(is_within_send_window(window, utc(*MONDAY, 20, 0)))
        self.assertFalse(is_within_send_window(window, utc(*SATURDAY, 20, 0)))

    def test_malformed_times_leave_the_window_open(self):
        window = SendWindow(enabled=True, start_time="9am", end_time="17:00", allowed_days=[1])
        self.assertTrue(is_within_send_window(window, utc(*MONDAY, 20, 0)))

    def test_unknown_timezone_falls_back_to_default(self):
        window = self.office_hours.model_copy(update={"timezone": "Mars/Olympus_Mons"})
        with self.assertLogs("leadflow.workflow.send_window", level="WARNING"):
            self.assertTrue(is_within_send_window(window, utc(*MONDAY, 10, 0)))

    def test_naive_datetimes_are_utc(self):
        self.assertTrue(is_within_send_window(self.office_hours, datetime(*MONDAY, 10, 0)))

    def test_builder_aliases(self):
        window = SendWindow.model_validate(
            {"enabled": True, "startTime": "08:00", "endTime": "12:00", "days": [0, 6], "timezone": "UTC"}
        )
        self.assertEqual(window.allowed_days, [0, 6])
        self.assertTrue(is_within_send_window(window, utc(*SATURDAY, 9, 0)))
        self.assertFalse(is_within_send_window(window, utc(*MONDAY, 9, 0)))


if __name__ == "__main__":
    unittest.main()
