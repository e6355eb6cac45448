from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Sequence, Union

import httpx
import yaml
from jsonschema import Draft202012Validator

from ..config import Settings, get_settings
from .exceptions import ProfileStoreError
from .schemas import Profile

logger = logging.getLogger(__name__)

ProfileRef = Union[str, Sequence[str], None]

SCHEMA_PATH = Path(__file__).parent.parent / "profiles" / "structure_definition.schema.json"


class ProfileStore(Protocol):
    """Resolves the profile a document is validated against."""

    async def lookup(self, resource_type: str, profile_url: ProfileRef = None) -> Optional[Profile]: ...


def profile_urls(profile_url: Any) -> Optional[List[str]]:
    """Normalise a ``meta.profile`` value; None when it is not a string or list of strings."""
    if profile_url is None:
        return []
    if isinstance(profile_url, str):
        return [profile_url]
    if isinstance(profile_url, (list, tuple)) and all(isinstance(p, str) for p in profile_url):
        return list(profile_url)
    return None


class InMemoryProfileStore:
    def __init__(self, profiles: Sequence[Profile] = ()):
        self._by_type: Dict[str, List[Profile]] = {}
        for profile in profiles:
            self.add(profile)

    def add(self, profile: Profile) -> None:
        self._by_type.setdefault(profile.resource_type, []).append(profile)
        logger.info(f"Registered profile {profile.canonical_url} for {profile.resource_type}")

    def clear(self) -> None:
        self._by_type.clear()

    def __len__(self) -> int:
        return sum(len(v) for v in self._by_type.values())

    async def lookup(self, resource_type: str, profile_url: ProfileRef = None) -> Optional[Profile]:
        if not isinstance(resource_type, str):
            return None
        urls = profile_urls(profile_url)
        if urls is None:
            return None

        candidates = self._by_type.get(resource_type, [])
        if not urls:
            return candidates[0] if candidates else None
        for url in urls:
            for profile in candidates:
                if profile.canonical_url == url:
                    return profile
        return None


class FileProfileStore:
    """
    StructureDefinitions loaded from JSON or YAML files.

    Each file holds one StructureDefinition, or a list of them, and is
    checked against the bundled JSON schema before it is indexed.
    """

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self.settings = settings or get_settings()
        self._schema: Dict[str, Any] = {}
        self._validator: Optional[Draft202012Validator] = None
        self._store = InMemoryProfileStore()
        self.sources: List[str] = []

    def load_schema(self, schema_path: Path) -> None:
        with schema_path.open("r", encoding="utf-8") as f:
            self._schema = json.load(f)
        self._validator = Draft202012Validator(self._schema)

    def _validate(self, data: Dict[str, Any], source: str) -> None:
        assert self._validator is not None
        errors = sorted(self._validator.iter_errors(data), key=lambda e: list(e.path))
        if errors:
            msgs = [f"{list(e.path)}: {e.message}" for e in errors]
            raise ProfileStoreError(f"StructureDefinition validation failed for {source}: {'; '.join(msgs)}")

    def _read(self, p: Path) -> List[Dict[str, Any]]:
        with p.open("r", encoding="utf-8") as f:
            if p.suffix.lower() in (".yaml", ".yml"):
                data = yaml.safe_load(f)
            else:
                data = json.load(f)
        return data if isinstance(data, list) else [data]

    def load(self) -> "FileProfileStore":
        if not self._schema:
            self.load_schema(SCHEMA_PATH)

        store = InMemoryProfileStore()
        sources: List[str] = []
        for p in self.settings.profile_paths():
            if not p.exists():
                raise ProfileStoreError(f"Profile file not found: {p}")
            for definition in self._read(p):
                self._validate(definition, str(p))
                store.add(Profile.from_structure_definition(definition))
            sources.append(str(p))

        # swap in one step so concurrent lookups never see a half-built store
        self._store = store
        self.sources = sources
        logger.info("Profiles loaded", extra={"sources": sources, "count": len(store)})
        return self

    def reload(self) -> "FileProfileStore":
        return self.load()

    async def lookup(self, resource_type: str, profile_url: ProfileRef = None) -> Optional[Profile]:
        return await self._store.lookup(resource_type, profile_url)


class HttpProfileStore:
    """StructureDefinitions fetched from a FHIR server's search API."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    async def lookup(self, resource_type: str, profile_url: ProfileRef = None) -> Optional[Profile]:
        urls = profile_urls(profile_url)
        if not isinstance(resource_type, str) or urls is None:
            return None

        params: Dict[str, str] = {"type": resource_type}
        if urls:
            params["url"] = ",".join(urls)
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.get(f"{self.base_url}/StructureDefinition", params=params)
                if response.status_code != 200:
                    logger.warning(f"Profile lookup for {resource_type} returned {response.status_code}")
                    return None
                bundle = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Profile lookup for {resource_type} failed: {e}")
            return None

        for entry in bundle.get("entry") or []:
            definition = entry.get("resource") or {}
            if definition.get("type") != resource_type:
                continue
            if urls and definition.get("url") not in urls:
                continue
            return Profile.from_structure_definition(definition)
        return None
