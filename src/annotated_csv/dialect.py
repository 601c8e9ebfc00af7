from dataclasses import dataclass, field
from typing import Any, Dict, Tuple

ANNOTATION_DATATYPE = "datatype"
ANNOTATION_GROUP = "group"
ANNOTATION_DEFAULT = "default"
ANNOTATIONS: Tuple[str, ...] = (ANNOTATION_DATATYPE, ANNOTATION_GROUP, ANNOTATION_DEFAULT)

COMMENT_PREFIX = "#"
LINE_TERMINATORS = ("\n", "\r\n")


def _check_delimiter(delimiter: str) -> None:
    if len(delimiter) != 1 or delimiter in "\r\n\"" or delimiter == COMMENT_PREFIX:
        raise ValueError(f"invalid delimiter {delimiter!r}")


@dataclass(frozen=True)
class DecoderConfig:
    delimiter: str = ","

    def __post_init__(self):
        _check_delimiter(self.delimiter)


@dataclass(frozen=True)
class EncoderConfig:
    """
    Options for MultiResultEncoder. All options are independent.

    Attributes:
        no_header: Emit data rows only, without annotation and header rows.
        delimiter: Single field separator character.
        line_terminator: "\\r\\n" or "\\n".
        annotations: Which annotation rows to emit, always in canonical order.
        merge_tables: Let consecutive tables with identical columns share one block.
        terminate_last_table: Write the blank line after the final table.
    """
    no_header: bool = False
    delimiter: str = ","
    line_terminator: str = "\r\n"
    annotations: Tuple[str, ...] = ANNOTATIONS
    merge_tables: bool = False
    terminate_last_table: bool = True

    def __post_init__(self):
        _check_delimiter(self.delimiter)
        if self.line_terminator not in LINE_TERMINATORS:
            raise ValueError(f"invalid line terminator {self.line_terminator!r}")
        unknown = set(self.annotations) - set(ANNOTATIONS)
        if unknown:
            raise ValueError(f"unknown annotations: {sorted(unknown)}")


@dataclass(frozen=True)
class Dialect:
    """Output formatting preferences sent with a query request"""
    header: bool = True
    delimiter: str = ","
    annotations: Tuple[str, ...] = field(default=ANNOTATIONS)
    comment_prefix: str = COMMENT_PREFIX
    date_time_format: str = "RFC3339"

    def __post_init__(self):
        _check_delimiter(self.delimiter)
        if self.date_time_format not in ("RFC3339", "RFC3339Nano"):
            raise ValueError(f"invalid date time format {self.date_time_format!r}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "header": self.header,
            "delimiter": self.delimiter,
            "annotations": list(self.annotations),
            "commentPrefix": self.comment_prefix,
            "dateTimeFormat": self.date_time_format,
        }

    def encoder_config(self, **overrides) -> EncoderConfig:
        options = dict(
            no_header=not self.header,
            delimiter=self.delimiter,
            annotations=tuple(a for a in ANNOTATIONS if a in self.annotations),
        )
        options.update(overrides)
        return EncoderConfig(**options)

    def decoder_config(self) -> DecoderConfig:
        return DecoderConfig(delimiter=self.delimiter)
