import io
import unittest
from datetime import datetime, timedelta, timezone

import pyarrow as pa

from annotated_csv.decoder import MultiResultDecoder
from annotated_csv.encoder import MultiResultEncoder
from core.arrow_conversion import arrow_schema, table_from_arrow, table_to_arrow
from core.model import Column, DataType, Result, Table


class TestArrowConversion(unittest.TestCase):
    def setUp(self):
        self.columns = [
            Column("_time", DataType.TIME),
            Column("host", DataType.STRING, group=True),
            Column("value", DataType.DOUBLE),
            Column("count", DataType.UNSIGNED_LONG),
            Column("elapsed", DataType.DURATION),
        ]
        t0 = datetime(2018, 8, 29, 13, 8, 47, tzinfo=timezone.utc)
        self.table = Table.from_rows(self.columns, [
            (t0, "a", 1.5, 3, timedelta(seconds=1)),
            (t0 + timedelta(seconds=10), "a", None, 4, timedelta(milliseconds=5)),
        ])

    def test_schema_metadata(self):
        schema = arrow_schema(self.columns)
        self.assertEqual(schema.field("host").type, pa.string())
        self.assertEqual(schema.field("count").type, pa.uint64())
        self.assertEqual(schema.field("host").metadata[b"group"], b"true")
        self.assertEqual(schema.field("_time").metadata[b"datatype"], b"dateTime:RFC3339")

    def test_table_to_arrow(self):
        result = table_to_arrow(self.table)
        self.assertIsInstance(result, pa.Table)
        self.assertEqual(result.num_rows, 2)
        self.assertListEqual(result.column("host").to_pylist(), ["a", "a"])
        self.assertListEqual(result.column("value").to_pylist(), [1.5, None])

    def test_arrow_round_trip(self):
        restored = table_from_arrow(table_to_arrow(self.table))
        self.assertEqual(restored, self.table)

    def test_infer_from_plain_arrow(self):
        arrow_table = pa.table({
            "host": ["a", "a"],
            "value": [1.5, 2.0],
            "n": pa.array([1, 2], type=pa.uint64()),
            "ok": [True, False],
        })
        table = table_from_arrow(arrow_table, group_columns=["host"])
        self.assertListEqual(
            [c.data_type for c in table.columns],
            [DataType.STRING, DataType.DOUBLE, DataType.UNSIGNED_LONG, DataType.BOOLEAN],
        )
        self.assertEqual(table.key.labels(), ["host"])
        self.assertEqual(table.key.values, ("a",))

    def test_unsupported_arrow_type(self):
        arrow_table = pa.table({"tags": pa.array([[1, 2]], type=pa.list_(pa.int64()))})
        with self.assertRaises(ValueError):
            table_from_arrow(arrow_table)

    def test_reserved_labels_rejected(self):
        for label in ["result", "table"]:
            with self.assertRaises(ValueError, msg=label):
                table_from_arrow(pa.table({"host": ["a"], label: [5]}))

    def test_encode_arrow_table(self):
        table = table_from_arrow(table_to_arrow(self.table))
        sink = io.BytesIO()
        MultiResultEncoder().encode(sink, [Result("_result", [table])])

        iterator = MultiResultDecoder().decode(sink.getvalue())
        decoded = [r.materialize() for r in iterator]
        self.assertIsNone(iterator.err)
        self.assertEqual(decoded[0].tables[0], self.table)


if __name__ == "__main__":
    unittest.main()
