# swaptrader/logger.py
import asyncio
import aiofiles
from aiocsv import AsyncWriter
import logging
import sys
import os
from typing import List, Any, Optional

from rich.console import Console
from rich.logging import RichHandler

TRADE_LOG_HEADER = [
    "time", "action", "symbol", "mint", "amount", "price", "txid", "pnl", "pnl_pct",
]


class AsyncAuditLogger:
    """
    Non-blocking CSV ledger of executed swaps.
    Disk I/O runs in a background task fed by an asyncio Queue, so the
    trading loops never wait on the file system.
    """
    def __init__(self, filepath: str):
        self.filepath = filepath
        self._queue: asyncio.Queue = asyncio.Queue()
        self._worker_task: Optional[asyncio.Task] = None

    async def start(self):
        """
        Creates the file (with header) if missing and starts the background writer.
        """
        directory = os.path.dirname(self.filepath)
        if directory and not os.path.exists(directory):
            os.makedirs(directory, exist_ok=True)

        if not os.path.exists(self.filepath) or os.path.getsize(self.filepath) == 0:
            async with aiofiles.open(self.filepath, mode='a', newline='') as f:
                writer = AsyncWriter(f, dialect='unix')
                await writer.writerow(TRADE_LOG_HEADER)
        self._worker_task = asyncio.create_task(self._writer_worker())

    async def log_trade(self, data: List[Any]):
        await self._queue.put(data)

    async def stop(self):
        """
        Flushes queued rows, then stops the writer.
        """
        if self._worker_task is None:
            return
        await self._queue.join()
        self._worker_task.cancel()
        try:
            await self._worker_task
        except asyncio.CancelledError:
            pass
        self._worker_task = None

    async def _writer_worker(self):
        while True:
            row = await self._queue.get()
            try:
                async with aiofiles.open(self.filepath, mode='a', newline='') as f:
                    writer = AsyncWriter(f, dialect='unix')
                    await writer.writerow(row)
            except Exception as e:
                # Disk trouble must not take the bot down with it
                print(f"LOGGING FAILURE: {e}", file=sys.stderr)
            finally:
                self._queue.task_done()


def setup_console_logger(name: str, level: str, log_file: Optional[str] = None):
    """
    Colored console output through rich, plus an optional plain-text log file.
    """
    logger = logging.getLogger(name)
    logger.setLevel(level)

    if not logger.handlers:
        console = RichHandler(
            console=Console(file=sys.stdout),
            show_path=False,
            log_time_format="%Y-%m-%d %H:%M:%S",
        )
        console.setFormatter(logging.Formatter('%(message)s'))
        logger.addHandler(console)

        if log_file:
            file_handler = logging.FileHandler(log_file, encoding="utf-8")
            file_handler.setFormatter(
                logging.Formatter('%(asctime)s | %(levelname)s | %(module)s | %(message)s')
            )
            logger.addHandler(file_handler)

    return logger


def format_number(num: Any, decimals: int = 2) -> str:
    if isinstance(num, bool) or not isinstance(num, (int, float)):
        return "0"
    return f"{num:,.{decimals}f}"


def format_currency(num: Any) -> str:
    if isinstance(num, bool) or not isinstance(num, (int, float)):
        return "$0"
    if num == float("inf"):
        return "$∞"
    sign = "-" if num < 0 else ""
    return f"{sign}${abs(num):,.2f}"
