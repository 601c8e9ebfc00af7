import math
import unittest
from datetime import datetime, timedelta, timezone

from annotated_csv.datatypes import empty_value, format_value, parse_value
from core.model import DataType


class TestNumericTypes(unittest.TestCase):
    def test_parse_long(self):
        self.assertEqual(parse_value(DataType.LONG, "10"), 10)
        self.assertEqual(parse_value(DataType.LONG, "-5"), -5)
        self.assertEqual(parse_value(DataType.LONG, "+7"), 7)

    def test_parse_long_rejects_non_integers(self):
        for text in ["1.5", "1_000", " 1", "abc", "0x10"]:
            with self.assertRaises(ValueError, msg=text):
                parse_value(DataType.LONG, text)

    def test_parse_long_range(self):
        self.assertEqual(parse_value(DataType.LONG, str(2 ** 63 - 1)), 2 ** 63 - 1)
        with self.assertRaises(ValueError):
            parse_value(DataType.LONG, str(2 ** 63))

    def test_parse_unsigned_long(self):
        self.assertEqual(parse_value(DataType.UNSIGNED_LONG, "18446744073709551615"), 2 ** 64 - 1)
        with self.assertRaises(ValueError):
            parse_value(DataType.UNSIGNED_LONG, "-1")
        with self.assertRaises(ValueError):
            parse_value(DataType.UNSIGNED_LONG, "18446744073709551616")

    def test_format_unsigned_rejects_negative(self):
        with self.assertRaises(ValueError):
            format_value(DataType.UNSIGNED_LONG, -1)

    def test_parse_double(self):
        self.assertEqual(parse_value(DataType.DOUBLE, "10.2"), 10.2)
        self.assertEqual(parse_value(DataType.DOUBLE, "1e3"), 1000.0)
        self.assertEqual(parse_value(DataType.DOUBLE, "+Inf"), math.inf)
        self.assertEqual(parse_value(DataType.DOUBLE, "-Inf"), -math.inf)
        self.assertTrue(math.isnan(parse_value(DataType.DOUBLE, "NaN")))
        with self.assertRaises(ValueError):
            parse_value(DataType.DOUBLE, "ten")

    def test_format_double(self):
        self.assertEqual(format_value(DataType.DOUBLE, 10.2), "10.2")
        self.assertEqual(format_value(DataType.DOUBLE, 10.0), "10")
        self.assertEqual(format_value(DataType.DOUBLE, 1e20), "100000000000000000000")
        self.assertEqual(format_value(DataType.DOUBLE, 1.5e-7), "0.00000015")
        self.assertEqual(format_value(DataType.DOUBLE, math.inf), "+Inf")
        self.assertEqual(format_value(DataType.DOUBLE, math.nan), "NaN")

    def test_format_integer_rejects_other_types(self):
        with self.assertRaises(TypeError):
            format_value(DataType.LONG, "10")
        with self.assertRaises(TypeError):
            format_value(DataType.LONG, True)


class TestBooleanAndString(unittest.TestCase):
    def test_parse_boolean(self):
        for text in ["true", "True", "TRUE", "t", "1"]:
            self.assertIs(parse_value(DataType.BOOLEAN, text), True)
        for text in ["false", "F", "0"]:
            self.assertIs(parse_value(DataType.BOOLEAN, text), False)
        with self.assertRaises(ValueError):
            parse_value(DataType.BOOLEAN, "yes")

    def test_format_boolean(self):
        self.assertEqual(format_value(DataType.BOOLEAN, True), "true")
        self.assertEqual(format_value(DataType.BOOLEAN, False), "false")

    def test_string_is_verbatim(self):
        self.assertEqual(parse_value(DataType.STRING, " a,b "), " a,b ")
        self.assertEqual(format_value(DataType.STRING, "yay"), "yay")

    def test_empty_values(self):
        self.assertEqual(empty_value(DataType.STRING), "")
        self.assertIsNone(empty_value(DataType.LONG))
        self.assertEqual(format_value(DataType.DOUBLE, None), "")


class TestTimeTypes(unittest.TestCase):
    def test_parse_time(self):
        expected = datetime(2018, 8, 29, 13, 8, 47, tzinfo=timezone.utc)
        self.assertEqual(parse_value(DataType.TIME, "2018-08-29T13:08:47Z"), expected)
        self.assertEqual(parse_value(DataType.TIME, "2018-08-29T15:08:47+02:00"), expected)

    def test_parse_time_fraction(self):
        value = parse_value(DataType.TIME_NANO, "2018-08-29T13:08:47.123456789Z")
        self.assertEqual(value.microsecond, 123456)

    def test_parse_time_rejects_garbage(self):
        for text in ["2018-08-29", "2018-08-29 13:08:47Z", "2018-13-29T13:08:47Z"]:
            with self.assertRaises(ValueError, msg=text):
                parse_value(DataType.TIME, text)

    def test_format_time(self):
        value = datetime(2018, 8, 29, 13, 8, 47, 500000, tzinfo=timezone.utc)
        self.assertEqual(format_value(DataType.TIME, value), "2018-08-29T13:08:47.5Z")
        naive = datetime(2018, 8, 29, 13, 8, 47)
        self.assertEqual(format_value(DataType.TIME, naive), "2018-08-29T13:08:47Z")
        offset = datetime(2018, 8, 29, 15, 8, 47, tzinfo=timezone(timedelta(hours=2)))
        self.assertEqual(format_value(DataType.TIME, offset), "2018-08-29T13:08:47Z")

    def test_parse_duration(self):
        self.assertEqual(parse_value(DataType.DURATION, "1h2m3s"), timedelta(hours=1, minutes=2, seconds=3))
        self.assertEqual(parse_value(DataType.DURATION, "-1500ms"), -timedelta(seconds=1.5))
        self.assertEqual(parse_value(DataType.DURATION, "1500ns"), timedelta(microseconds=1))
        self.assertEqual(parse_value(DataType.DURATION, "1w1d"), timedelta(days=8))
        for text in ["", "-", "1", "1x", "h1"]:
            with self.assertRaises(ValueError, msg=text):
                parse_value(DataType.DURATION, text)

    def test_format_duration(self):
        value = timedelta(hours=1, minutes=2, seconds=3, milliseconds=500)
        self.assertEqual(format_value(DataType.DURATION, value), "1h2m3s500ms")
        self.assertEqual(format_value(DataType.DURATION, timedelta(0)), "0s")
        self.assertEqual(format_value(DataType.DURATION, -timedelta(seconds=90)), "-1m30s")
        self.assertEqual(format_value(DataType.DURATION, timedelta(days=1)), "24h")


if __name__ == "__main__":
    unittest.main()
