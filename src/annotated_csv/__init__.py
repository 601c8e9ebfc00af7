from annotated_csv.datatypes import format_value, parse_value
from annotated_csv.decoder import MultiResultDecoder, ResultIterator
from annotated_csv.dialect import DecoderConfig, Dialect, EncoderConfig
from annotated_csv.encoder import MultiResultEncoder

__all__ = [
    "DecoderConfig",
    "Dialect",
    "EncoderConfig",
    "MultiResultDecoder",
    "MultiResultEncoder",
    "ResultIterator",
    "format_value",
    "parse_value",
]
