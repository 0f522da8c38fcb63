"""
Result writers. Each accepts CrawlResult objects (or plain dicts) and serializes them to a text stream.
"""

import json
from abc import ABC, abstractmethod

import yaml


def _as_record(item):
    if hasattr(item, "to_dict"):
        return item.to_dict()
    return item


class Writer(ABC):

    def __init__(self, stream):
        self.stream = stream

    @abstractmethod
    def write(self, item):
        pass

    def write_all(self, items):
        for item in items:
            self.write(item)

    def flush(self):
        self.stream.flush()

    def close(self):
        self.flush()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()


class JSONWriter(Writer):
    """Buffers everything; a single record is written bare, several as an array."""

    def __init__(self, stream, indent=2):
        super().__init__(stream)
        self.indent = indent
        self.items = []
        self._written = False

    def write(self, item):
        self.items.append(_as_record(item))

    def flush(self):
        if self._written:
            return
        payload = self.items[0] if len(self.items) == 1 else self.items
        json.dump(payload, self.stream, indent=self.indent, ensure_ascii=False, default=str)
        self.stream.write("\n")
        self.stream.flush()
        self._written = True


class JSONLWriter(Writer):
    """One compact JSON object per line, written as results arrive."""

    def write(self, item):
        self.stream.write(json.dumps(_as_record(item), ensure_ascii=False, default=str))
        self.stream.write("\n")
        self.stream.flush()


class YAMLWriter(Writer):
    """Buffers records and writes them as one YAML document."""

    def __init__(self, stream):
        super().__init__(stream)
        self.items = []
        self._written = False

    def write(self, item):
        # Round-trip through JSON so datetimes and other objects become plain scalars
        self.items.append(json.loads(json.dumps(_as_record(item), default=str)))

    def flush(self):
        if self._written:
            return
        payload = self.items[0] if len(self.items) == 1 else self.items
        yaml.safe_dump(payload, self.stream, sort_keys=False, allow_unicode=True)
        self.stream.flush()
        self._written = True


FORMATS = {
    "json": JSONWriter,
    "jsonl": JSONLWriter,
    "yaml": YAMLWriter,
}


def new_writer(fmt, stream):
    writer_cls = FORMATS.get((fmt or "").lower())
    if writer_cls is None:
        raise ValueError(f"unsupported output format: {fmt}")
    return writer_cls(stream)
