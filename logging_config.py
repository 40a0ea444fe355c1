"""Centralized logging configuration with optional Supabase support.

This module provides:
- JSONFormatter for structured logging (one JSON object per line)
- PlainFormatter for local debugging
- SupabaseHandler for centralized log collection (batched)

All local output goes to stderr: in stdio mode stdout carries the MCP
protocol and must stay clean.
"""

import atexit
import json
import logging
import re
import sys
import threading
from datetime import datetime, timezone
from queue import Empty, Queue
from typing import Optional

from supabase import create_client

_TAG_RE = re.compile(r"\[([A-Z_]+)\]\s*(.*)", re.DOTALL)


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def __init__(self, service_name: str = None, transport: str = None):
        super().__init__()
        self.service_name = service_name or "youtube-music-mcp"
        self.transport = transport

    def build_entry(self, record: logging.LogRecord) -> dict:
        # Extract tag from message if present: [TAG] message
        tag = None
        message = record.getMessage()
        tag_match = _TAG_RE.match(message)
        if tag_match:
            tag = tag_match.group(1)
            message = tag_match.group(2)

        log_entry = {
            "time": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "service": self.service_name,
            "transport": self.transport,
            "level": record.levelname,
            "tag": tag,
            "message": message,
            "logger": record.name,
            "extra": {
                "function": record.funcName,
                "line": record.lineno,
            }
        }

        if record.exc_info:
            log_entry["extra"]["exception"] = self.formatException(record.exc_info)

        return log_entry

    def format(self, record: logging.LogRecord) -> str:
        return json.dumps(self.build_entry(record), default=str)


class PlainFormatter(logging.Formatter):
    """Plain text formatter for stderr output (local debugging)."""

    def __init__(self):
        super().__init__(
            fmt='%(asctime)s [%(levelname)s] %(name)s: %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )


class SupabaseHandler(logging.Handler):
    """Logging handler that batches logs and sends to Supabase.

    Logs are buffered and sent in batches to reduce database writes.
    Flush occurs every flush_interval seconds or when batch_size is reached.
    """

    def __init__(
        self,
        supabase_client,
        formatter: JSONFormatter,
        batch_size: int = 20,
        flush_interval: float = 10.0,
        table: str = "logs",
    ):
        super().__init__()
        self.supabase = supabase_client
        self.entry_formatter = formatter
        self.batch_size = batch_size
        self.flush_interval = flush_interval
        self.table = table

        self._queue: Queue = Queue()
        self._shutdown = threading.Event()
        self._flush_thread = threading.Thread(target=self._flush_worker, daemon=True)
        self._flush_thread.start()

        atexit.register(self.close)

    def emit(self, record: logging.LogRecord):
        """Queue a log record for batched sending."""
        try:
            self._queue.put(self.entry_formatter.build_entry(record))
            if self._queue.qsize() >= self.batch_size:
                self._flush()
        except Exception:
            self.handleError(record)

    def _flush_worker(self):
        """Background thread that flushes logs periodically."""
        while not self._shutdown.wait(self.flush_interval):
            if not self._queue.empty():
                self._flush()

    def _flush(self):
        """Send queued logs to Supabase."""
        logs = []
        while len(logs) < self.batch_size * 2:  # Don't flush too many at once
            try:
                logs.append(self._queue.get_nowait())
            except Empty:
                break

        if not logs:
            return
        try:
            self.supabase.table(self.table).insert(logs).execute()
        except Exception as e:
            # Report on stderr directly; logging here would recurse
            print(f"[WARNING] Failed to send {len(logs)} logs to Supabase: {e}", file=sys.stderr)

    def flush(self):
        self._flush()

    def close(self):
        """Flush remaining logs and stop the background thread."""
        if not self._shutdown.is_set():
            self._shutdown.set()
            self._flush()
        super().close()


def create_supabase_client(url: Optional[str], key: Optional[str]):
    """Return a Supabase client, or None when not configured."""
    if not url or not key:
        return None
    return create_client(url, key)


def setup_logging(
    level: str = "INFO",
    log_format: str = "json",
    service_name: str = None,
    transport: str = None,
    supabase_client=None,
) -> logging.Logger:
    """Configure logging with optional Supabase integration.

    Args:
        level: Root log level name.
        log_format: "json" for structured stderr output, "plain" for human-readable.
        service_name: Service name attached to structured records.
        transport: Active MCP transport, attached to structured records.
        supabase_client: Supabase client instance for remote logging.

    Returns:
        Configured root logger.
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    json_formatter = JSONFormatter(service_name, transport)

    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setFormatter(json_formatter if log_format == "json" else PlainFormatter())
    root_logger.addHandler(stderr_handler)

    supabase_enabled = False
    if supabase_client:
        try:
            supabase_handler = SupabaseHandler(supabase_client, json_formatter)
            supabase_handler.setLevel(logging.INFO)
            root_logger.addHandler(supabase_handler)
            supabase_enabled = True
        except Exception as e:
            print(f"[WARNING] Supabase logging setup failed: {e}", file=sys.stderr)

    # Suppress noisy HTTP client logs; request URLs may carry tokens
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

    logger = logging.getLogger(__name__)
    if supabase_enabled:
        logger.info("[STARTUP] Supabase logging enabled")
    else:
        logger.debug("[STARTUP] Supabase logging disabled (no client)")

    return root_logger
