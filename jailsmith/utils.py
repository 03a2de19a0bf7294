import logging
from typing import Any, Dict

import orjson

from ._types import BuildReport

logger = logging.getLogger(__name__)


class ReportSerializer:
    @staticmethod
    def dumps(report: BuildReport, *, indent: bool = False) -> bytes:
        """
        Serialize a build report to JSON bytes.
        Set indent=True for pretty-printing (adds newlines and spaces).
        """
        options = orjson.OPT_SORT_KEYS
        if indent:
            options |= orjson.OPT_INDENT_2 | orjson.OPT_APPEND_NEWLINE
        return orjson.dumps(report.to_dict(), option=options)

    @staticmethod
    def dump(report: BuildReport, path: str, *, indent: bool = True) -> None:
        """
        Serialize a build report to a JSON file (UTF-8).
        Pretty-prints by default.
        """
        b = ReportSerializer.dumps(report, indent=indent)
        with open(path, "wb") as f:
            f.write(b)
        logger.debug("Build report written to %s", path)

    @staticmethod
    def load(path: str) -> Dict[str, Any]:
        with open(path, "rb") as f:
            return orjson.loads(f.read())
