# swaptrader/position_store.py
import asyncio
import json
import logging
import os
import time
from typing import Any, Dict, List, Optional

import aiofiles
import aiofiles.os

from .errors import PersistenceFailed
from .models import ClosedPosition, Position


async def _read_json(path: str) -> Optional[Any]:
    """None when the file does not exist yet."""
    if not await aiofiles.os.path.exists(path):
        return None
    async with aiofiles.open(path, mode='r', encoding='utf-8') as f:
        raw = await f.read()
    if not raw.strip():
        return None
    return json.loads(raw)


async def _write_json_atomic(path: str, data: Any):
    """
    Writes to a sibling temp file and renames it over the target, so a
    reader only ever sees the old file or the complete new one.
    """
    directory = os.path.dirname(path)
    if directory and not os.path.exists(directory):
        os.makedirs(directory, exist_ok=True)
    tmp_path = f"{path}.{os.getpid()}.tmp"
    try:
        async with aiofiles.open(tmp_path, mode='w', encoding='utf-8') as f:
            await f.write(json.dumps(data, indent=2))
            await f.flush()
            await asyncio.to_thread(os.fsync, f.fileno())
        await aiofiles.os.replace(tmp_path, path)
    except BaseException:
        if await aiofiles.os.path.exists(tmp_path):
            await aiofiles.os.remove(tmp_path)
        raise


class PositionStore:
    """
    Open positions keyed by asset id, plus the append-only log of closed ones.

    Write-through: every upsert/remove/append_closed saves the full collection
    before returning, so a crash loses at most the mutation in flight. A failed
    save is logged and the in-memory state stays authoritative.
    """
    def __init__(self, positions_file: str, sold_positions_file: str, logger: Optional[logging.Logger] = None):
        self.positions_file = positions_file
        self.sold_positions_file = sold_positions_file
        self.logger = logger or logging.getLogger(__name__)
        self.positions: Dict[str, Position] = {}
        self.closed: List[ClosedPosition] = []
        self._lock = asyncio.Lock()

    # --- reads ---

    def get(self, asset_id: str) -> Optional[Position]:
        return self.positions.get(asset_id)

    def ids(self) -> List[str]:
        return list(self.positions.keys())

    def __contains__(self, asset_id: str) -> bool:
        return asset_id in self.positions

    def __len__(self) -> int:
        return len(self.positions)

    # --- load / save ---

    async def load(self) -> Dict[str, Position]:
        try:
            data = await _read_json(self.positions_file)
        except (OSError, ValueError) as e:
            self.logger.error(f"❌ Error loading positions: {e}")
            await self._quarantine(self.positions_file)
            data = None

        positions: Dict[str, Position] = {}
        if isinstance(data, dict):
            for asset_id, raw in data.items():
                if isinstance(raw, dict):
                    positions[asset_id] = Position.from_dict(asset_id, raw)
        self.positions = positions
        self.logger.info(f"✅ Loaded {len(positions)} positions from file")
        return dict(positions)

    async def load_closed(self) -> List[ClosedPosition]:
        try:
            data = await _read_json(self.sold_positions_file)
        except (OSError, ValueError) as e:
            self.logger.error(f"❌ Error loading sold positions: {e}")
            await self._quarantine(self.sold_positions_file)
            data = None

        closed: List[ClosedPosition] = []
        if isinstance(data, list):
            closed = [ClosedPosition.from_dict(item) for item in data if isinstance(item, dict)]
        self.closed = closed
        self.logger.info(f"✅ Loaded {len(closed)} sold positions from file")
        return list(closed)

    async def save(self, positions: Optional[Dict[str, Position]] = None):
        """
        Atomically replaces the positions file. Raises PersistenceFailed.
        """
        snapshot = self.positions if positions is None else positions
        payload = {asset_id: pos.to_dict() for asset_id, pos in snapshot.items()}
        try:
            await _write_json_atomic(self.positions_file, payload)
        except OSError as e:
            raise PersistenceFailed(f"Could not write {self.positions_file}: {e}") from e
        self.logger.debug(f"Saved {len(payload)} positions to file")

    async def save_closed(self):
        payload = [c.to_dict() for c in self.closed]
        try:
            await _write_json_atomic(self.sold_positions_file, payload)
        except OSError as e:
            raise PersistenceFailed(f"Could not write {self.sold_positions_file}: {e}") from e
        self.logger.debug(f"Saved {len(payload)} sold positions to file")

    # --- write-through mutations ---

    # The in-memory change happens before the first await, so callers can rely
    # on it being visible as soon as the call starts. The lock only orders saves.

    async def upsert(self, asset_id: str, position: Position) -> bool:
        self.positions[asset_id] = position
        async with self._lock:
            return await self._persist(self.save)

    async def remove(self, asset_id: str) -> Optional[Position]:
        removed = self.positions.pop(asset_id, None)
        if removed is None:
            return None
        async with self._lock:
            await self._persist(self.save)
        return removed

    async def append_closed(self, closed: ClosedPosition) -> bool:
        self.closed.append(closed)
        async with self._lock:
            return await self._persist(self.save_closed)

    async def _persist(self, save) -> bool:
        try:
            await save()
        except PersistenceFailed as e:
            self.logger.error(f"❌ {e} [{e.code}]")
            return False
        return True

    async def _quarantine(self, path: str):
        # Keep an unreadable file around instead of overwriting it on the next save.
        try:
            if await aiofiles.os.path.exists(path):
                await aiofiles.os.replace(path, f"{path}.corrupt-{int(time.time())}")
        except OSError as e:
            self.logger.error(f"❌ Could not move aside {path}: {e}")
