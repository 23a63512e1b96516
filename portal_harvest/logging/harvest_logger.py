"""
Purpose
-------
Structured, line-per-event logging for the harvester. Every component
receives one `HarvestLogger` built by `initialize_logger` at process start.

Key behaviors
-------------
- Drops events below the run's level threshold before any formatting.
- Serializes entries as JSON (default) or a single readable text line.
- Reads LOG_FORMAT / LOG_DEST from the environment; every invalid setting is
  replaced by its default and reported as a FALLBACK_* warning once the logger
  exists.

Conventions
-----------
- Timestamps are UTC ISO-8601 with a trailing "Z".
- Portal credentials are never passed as context, only their lengths.

Downstream usage
----------------
`logger = initialize_logger("harvest_bookings", level, run_meta={...})`, then
`logger.info("event_name", msg="...", context={...})`.
"""

import datetime as dt
import json
import os
import sys
from typing import List, NamedTuple, TypedDict

LEVEL_MAPPING: dict[str, int] = {"DEBUG": 10, "INFO": 20, "WARNING": 30, "ERROR": 40}
LOG_FORMATS: set[str] = {"json", "text"}
SETTING_DEFAULTS: dict[str, str] = {"LOG_LEVEL": "INFO", "LOG_FORMAT": "json", "LOG_DEST": "stderr"}


class LogEntry(TypedDict):
    """One emitted event, in the order fields appear in JSON output."""

    timestamp: str
    level: str
    run_id: str
    component: str
    event: str
    message: str
    run_meta: dict
    context: dict


class Fallback(NamedTuple):
    """An invalid logging setting that was replaced by its default."""

    setting: str
    invalid_value: str | None


class HarvestLogger:
    """
    Level-gated structured logger bound to one run.

    Parameters
    ----------
    component_name : str
        Label written into every entry.
    run_id : str
        Correlates all entries of one harvest run.
    run_meta : dict
        Run-scoped metadata repeated on every entry (e.g. requested years).
    log_level : str, default="INFO"
        Minimum level that is written.
    log_format : str, default="json"
        "json" or "text".
    log_dest : str, default="stderr"
        "stderr" or a file path opened in append mode.
    """

    def __init__(
        self,
        component_name: str,
        run_id: str,
        run_meta: dict,
        log_level: str = "INFO",
        log_format: str = "json",
        log_dest: str = "stderr",
    ) -> None:
        self.component_name = component_name
        self.run_id = run_id
        self.run_meta = run_meta
        self.level = log_level
        self.format = log_format
        self.dest = log_dest

    def emit(
        self, event: str, level: str = "INFO", msg: str | None = None, context: dict | None = None
    ) -> None:
        """
        Build, format, and write one entry if `level` passes the threshold.

        Parameters
        ----------
        event : str
            Snake_case event name.
        level : str, default="INFO"
            Severity of this entry.
        msg : str, optional
            Human-readable message; "" when omitted.
        context : dict, optional
            Event payload; {} when omitted.

        Returns
        -------
        None
        """

        if LEVEL_MAPPING[level] < LEVEL_MAPPING[self.level]:
            return
        entry: LogEntry = {
            "timestamp": dt.datetime.now(dt.timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": level,
            "run_id": self.run_id,
            "component": self.component_name,
            "event": event,
            "message": msg or "",
            "run_meta": self.run_meta,
            "context": context or {},
        }
        self.write_entry(self.format_entry(entry))

    def debug(self, event: str, msg: str | None = None, context: dict | None = None) -> None:
        self.emit(event=event, level="DEBUG", msg=msg, context=context)

    def info(self, event: str, msg: str | None = None, context: dict | None = None) -> None:
        self.emit(event=event, level="INFO", msg=msg, context=context)

    def warning(self, event: str, msg: str | None = None, context: dict | None = None) -> None:
        self.emit(event=event, level="WARNING", msg=msg, context=context)

    def error(self, event: str, msg: str | None = None, context: dict | None = None) -> None:
        self.emit(event=event, level="ERROR", msg=msg, context=context)

    def format_entry(self, entry: LogEntry) -> str:
        """
        Serialize an entry for the configured format.

        JSON output stringifies values `json` cannot encode (dates, payload
        fragments). Text output is
        `<timestamp> [<LEVEL>] <component>.<event> <message>` followed by
        ` | key=value ...` when the entry has context.
        """

        if self.format == "json":
            return json.dumps(entry, ensure_ascii=False, default=str)
        line: str = (
            f"{entry['timestamp']} [{entry['level']}] "
            f"{entry['component']}.{entry['event']} {entry['message']}"
        )
        if entry["context"]:
            line += " | " + " ".join(f"{k}={v}" for k, v in entry["context"].items())
        return line

    def write_entry(self, formatted_entry: str) -> None:
        """Write one serialized entry plus newline to stderr or the log file."""

        if self.dest == "stderr":
            print(formatted_entry, file=sys.stderr)
        else:
            with open(self.dest, "a", encoding="utf-8") as f:
                f.write(formatted_entry + "\n")


def initialize_logger(
    component_name: str,
    level: str = "INFO",
    run_id: str | None = None,
    run_meta: dict | None = None,
) -> HarvestLogger:
    """
    Configure a HarvestLogger from the CLI level and the environment.

    Parameters
    ----------
    component_name : str
        Component label; also prefixes a generated run_id.
    level : str, default="INFO"
        Requested threshold, case-insensitive; unknown values become INFO.
    run_id : str, optional
        Generated with `generate_run_id` when omitted.
    run_meta : dict, optional
        Defaults to {}.

    Returns
    -------
    HarvestLogger
        Logger whose first entries are the FALLBACK_* warnings, if any.
    """

    fallbacks: List[Fallback] = []
    log_level: str = resolve_level(level, fallbacks)
    log_format, log_dest = resolve_output_settings(fallbacks)
    logger = HarvestLogger(
        component_name=component_name,
        run_id=run_id if run_id is not None else generate_run_id(component_name),
        run_meta=run_meta if run_meta is not None else {},
        log_level=log_level,
        log_format=log_format,
        log_dest=log_dest,
    )
    report_fallbacks(logger, fallbacks)
    return logger


def resolve_level(level: str | None, fallbacks: List[Fallback]) -> str:
    """Upper-case `level`, or record a fallback and return INFO."""

    normalized: str = str(level).upper()
    if normalized in LEVEL_MAPPING:
        return normalized
    fallbacks.append(Fallback("LOG_LEVEL", level))
    return SETTING_DEFAULTS["LOG_LEVEL"]


def resolve_output_settings(fallbacks: List[Fallback]) -> tuple[str, str]:
    """
    Read LOG_FORMAT and LOG_DEST, replacing invalid values with defaults.

    Parameters
    ----------
    fallbacks : List[Fallback]
        Appended to for every setting that had to be replaced.

    Returns
    -------
    tuple[str, str]
        (format, destination); the format is lower-cased and a file
        destination is kept only if it can be opened for appending.
    """

    raw_format: str = os.environ.get("LOG_FORMAT", "json")
    raw_dest: str = os.environ.get("LOG_DEST", "stderr")

    log_format: str = raw_format.lower()
    if log_format not in LOG_FORMATS:
        fallbacks.append(Fallback("LOG_FORMAT", raw_format))
        log_format = SETTING_DEFAULTS["LOG_FORMAT"]

    if raw_dest.lower() == "stderr":
        return log_format, "stderr"
    try:
        with open(raw_dest, "a", encoding="utf-8"):
            pass
    except OSError:
        fallbacks.append(Fallback("LOG_DEST", raw_dest))
        return log_format, SETTING_DEFAULTS["LOG_DEST"]
    return log_format, raw_dest


def generate_run_id(component_name: str) -> str:
    """`<component>--<UTC second>--<pid>`; the pid separates concurrent runs."""

    started: str = dt.datetime.now(dt.timezone.utc).strftime("%Y%m%dT%H%M%SZ")
    return f"{component_name}--{started}--{os.getpid()}"


def report_fallbacks(logger: HarvestLogger, fallbacks: List[Fallback]) -> None:
    """Emit one FALLBACK_<SETTING> warning per replaced setting, in order."""

    for fallback in fallbacks:
        default: str = SETTING_DEFAULTS[fallback.setting]
        logger.warning(
            f"FALLBACK_{fallback.setting}",
            msg=f"Invalid {fallback.setting}; defaulting to {default}",
            context={"invalid_value": fallback.invalid_value},
        )
