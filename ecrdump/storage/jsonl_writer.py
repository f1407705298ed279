"""Line-delimited JSON output."""

import json
import logging
import sys
from dataclasses import dataclass
from typing import Iterable, TextIO

from ..errors import OutputError


logger = logging.getLogger(__name__)


@dataclass
class WriteResult:
    """Outcome of writing a record stream."""
    written: int = 0
    skipped: int = 0
    failed_records: int = 0


def open_sink(path: str) -> TextIO:
    """Open the output destination; ``-`` means stdout."""
    if path == '-':
        return sys.stdout
    try:
        return open(path, 'w', encoding='utf-8')
    except OSError as e:
        raise OutputError(f"Cannot open output {path}: {e}") from e


class JsonLinesWriter:
    """Writes each record as one complete JSON line, flushed immediately."""

    def __init__(self, sink: TextIO):
        self.sink = sink
        self.result = WriteResult()

    def write(self, records: Iterable) -> WriteResult:
        """Serialize and write every record.

        A record that cannot be serialized is skipped. A sink that cannot be
        written raises OutputError. ``self.result`` stays accurate if the
        iteration is interrupted.
        """
        for record in records:
            try:
                line = json.dumps(record.to_dict(), separators=(',', ':'), allow_nan=False)
            except (TypeError, ValueError, RecursionError) as e:
                logger.error(f"Skipping record that cannot be serialized ({record!r:.200}): {e}")
                self.result.skipped += 1
                continue

            try:
                self.sink.write(line + '\n')
                self.sink.flush()
            except OSError as e:
                raise OutputError(f"Cannot write to output: {e}") from e

            self.result.written += 1
            if getattr(record, 'failed', False):
                self.result.failed_records += 1

        return self.result
