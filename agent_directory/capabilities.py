"""
Off-chain capability index.

Agents registered in the directory can publish a list of capability tags
and a short description. Entries are keyed by the agent's on-chain name and
replaced wholesale on every write. Two storage backends share one interface:
a single JSON document (the default) and a SQL table for durable deployments.
"""
import asyncio
import json
import logging
import os
import re
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from agent_directory.directory_client import DirectoryClient
from agent_directory.errors import DirectoryError, NotFoundError, ValidationError
from agent_directory.models import CapabilityRecord

logger = logging.getLogger("agent_directory.capabilities")

CAPABILITY_PATTERN = re.compile(r"^[a-z0-9-]+$")
MAX_CAPABILITY_LENGTH = 32
MAX_DESCRIPTION_LENGTH = 200
META_KEY = "_meta"
STORE_VERSION = "1.0.0"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _format_ts(ts: datetime) -> str:
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"


def _parse_ts(value: Optional[str]) -> datetime:
    if not value:
        return datetime.fromtimestamp(0, tz=timezone.utc)
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def normalize_capabilities(raw: List[Any]) -> List[str]:
    """Lower-case and trim each tag, drop invalid ones, keep first occurrence order."""
    seen = []
    for item in raw:
        cap = str(item).lower().strip()
        if len(cap) > MAX_CAPABILITY_LENGTH or not CAPABILITY_PATTERN.match(cap):
            continue
        if cap not in seen:
            seen.append(cap)
    return seen


@dataclass
class CapabilityEntry:
    capabilities: List[str] = field(default_factory=list)
    description: Optional[str] = None
    updated_at: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "capabilities": list(self.capabilities),
            "description": self.description,
            "updatedAt": _format_ts(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CapabilityEntry":
        return cls(
            capabilities=list(data.get("capabilities") or []),
            description=data.get("description"),
            updated_at=_parse_ts(data.get("updatedAt")),
        )


class CapabilityStore:
    """Storage interface. ``put`` replaces any entry whose name matches case-insensitively."""

    def get(self, name: str) -> Optional[Tuple[str, CapabilityEntry]]:
        raise NotImplementedError

    def put(self, name: str, entry: CapabilityEntry) -> None:
        raise NotImplementedError

    def entries(self) -> List[Tuple[str, CapabilityEntry]]:
        raise NotImplementedError


class JsonCapabilityStore(CapabilityStore):
    """Whole index in one JSON file. Writes are serialized and land via atomic rename."""

    def __init__(self, path: str):
        self.path = path
        self._lock = threading.Lock()

    def _load(self) -> Dict[str, Any]:
        if not os.path.exists(self.path):
            return {META_KEY: {"version": STORE_VERSION}}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.error(f"Failed to load capabilities from {self.path}: {e}")
            raise DirectoryError("Capability store unavailable") from e
        if not isinstance(data, dict):
            logger.error(f"Capability store {self.path} is not a JSON object")
            raise DirectoryError("Capability store unavailable")
        return data

    def _save(self, data: Dict[str, Any]) -> None:
        meta = data.get(META_KEY) or {"version": STORE_VERSION}
        meta["updatedAt"] = _format_ts(_utcnow())
        data[META_KEY] = meta
        tmp_path = f"{self.path}.tmp"
        try:
            directory = os.path.dirname(self.path)
            if directory:
                os.makedirs(directory, exist_ok=True)
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
            os.replace(tmp_path, self.path)
        except OSError as e:
            logger.error(f"Failed to save capabilities to {self.path}: {e}")
            raise DirectoryError("Failed to save") from e

    @staticmethod
    def _agent_items(data: Dict[str, Any]):
        for key, value in data.items():
            if key == META_KEY or not isinstance(value, dict):
                continue
            yield key, value

    def get(self, name: str) -> Optional[Tuple[str, CapabilityEntry]]:
        data = self._load()
        if name in data and name != META_KEY and isinstance(data[name], dict):
            return name, CapabilityEntry.from_dict(data[name])
        wanted = name.lower()
        for key, value in self._agent_items(data):
            if key.lower() == wanted:
                return key, CapabilityEntry.from_dict(value)
        return None

    def put(self, name: str, entry: CapabilityEntry) -> None:
        if name.lower() == META_KEY:
            raise ValidationError(f"{META_KEY} is a reserved name")
        with self._lock:
            data = self._load()
            for key in [k for k, _ in self._agent_items(data) if k.lower() == name.lower()]:
                del data[key]
            data[name] = entry.to_dict()
            self._save(data)

    def entries(self) -> List[Tuple[str, CapabilityEntry]]:
        return [(key, CapabilityEntry.from_dict(value)) for key, value in self._agent_items(self._load())]


class SqlCapabilityStore(CapabilityStore):
    """One row per agent in ``agent_capabilities``."""

    def __init__(self, session_factory):
        self._session_factory = session_factory
        self._lock = threading.Lock()

    @staticmethod
    def _to_entry(record) -> CapabilityEntry:
        return CapabilityEntry(
            capabilities=list(record.capabilities or []),
            description=record.description,
            updated_at=record.updated_at.replace(tzinfo=timezone.utc),
        )

    def get(self, name: str) -> Optional[Tuple[str, CapabilityEntry]]:
        with self._session_factory() as db:
            record = db.query(CapabilityRecord).filter(CapabilityRecord.name_key == name.lower()).first()
            if not record:
                return None
            return record.name, self._to_entry(record)

    def put(self, name: str, entry: CapabilityEntry) -> None:
        updated_at = entry.updated_at.astimezone(timezone.utc).replace(tzinfo=None)
        with self._lock, self._session_factory() as db:
            record = db.query(CapabilityRecord).filter(CapabilityRecord.name_key == name.lower()).first()
            if record is None:
                record = CapabilityRecord(name_key=name.lower())
                db.add(record)
            record.name = name
            record.capabilities = list(entry.capabilities)
            record.description = entry.description
            record.updated_at = updated_at
            db.commit()

    def entries(self) -> List[Tuple[str, CapabilityEntry]]:
        with self._session_factory() as db:
            records = db.query(CapabilityRecord).order_by(CapabilityRecord.updated_at).all()
            return [(r.name, self._to_entry(r)) for r in records]


class CapabilityIndex:
    """Validation, directory check and search on top of a CapabilityStore."""

    def __init__(self, store: CapabilityStore, directory: DirectoryClient):
        self.store = store
        self.directory = directory

    async def set_capabilities(
        self, name: str, capabilities, description=None,
    ) -> Tuple[str, CapabilityEntry]:
        if not isinstance(capabilities, list):
            raise ValidationError("capabilities must be an array")
        valid = normalize_capabilities(capabilities)
        if not valid:
            raise ValidationError("No valid capabilities")
        if name.strip().lower() == META_KEY:
            raise ValidationError(f"{META_KEY} is a reserved name")

        # Point-in-time check; entries are not removed if the agent later disappears
        record = await self.directory.lookup(name)
        if record is None:
            raise NotFoundError("Agent not found")

        entry = CapabilityEntry(
            capabilities=valid,
            description=str(description)[:MAX_DESCRIPTION_LENGTH] if description else None,
            updated_at=_utcnow(),
        )
        # File or SQL write; keep it off the event loop
        await asyncio.to_thread(self.store.put, record.name, entry)
        logger.info(f"Capabilities for {record.name} set to {', '.join(valid)}")
        return record.name, entry

    def get(self, name: str) -> Tuple[str, CapabilityEntry]:
        found = self.store.get(name)
        if found is None:
            raise NotFoundError("No capabilities for this agent")
        return found

    def find(self, query: str) -> List[Dict[str, Any]]:
        """Agents with at least one tag containing ``query`` as a substring."""
        needle = (query or "").lower().strip()
        if not needle:
            raise ValidationError("Provide ?capability=X")
        matches = []
        for name, entry in self.store.entries():
            matched = [cap for cap in entry.capabilities if needle in cap]
            if matched:
                matches.append({
                    "name": name,
                    "capabilities": entry.capabilities,
                    "description": entry.description,
                    "matchedOn": matched,
                })
        return matches

    def summary(self) -> List[Dict[str, Any]]:
        """Every tag with its agent count and members, most common first."""
        members: Dict[str, List[str]] = {}
        for name, entry in self.store.entries():
            for cap in entry.capabilities:
                members.setdefault(cap, []).append(name)
        result = [
            {"capability": cap, "count": len(agents), "agents": agents}
            for cap, agents in members.items()
        ]
        result.sort(key=lambda item: item["count"], reverse=True)
        return result
