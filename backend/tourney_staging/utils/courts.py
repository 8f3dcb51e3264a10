"""
Court-name resolution across ranked lookup sources.

Court ids arrive from several places that do not always agree: stage-local
match data, the tournament court list, and whatever the caller has at hand.
Sources are consulted in order and the first one holding a non-empty name for
the id wins. An unknown id never raises; it renders as "Court {id}".
"""
from dataclasses import dataclass, field
from typing import Any, Iterable, List, Mapping, Optional, Sequence, Tuple

NO_COURT_LABEL = "No court assigned"

SOURCE_STAGE = "stage"
SOURCE_TOURNAMENT = "tournament"
SOURCE_ADDITIONAL = "additional"


def _entry_value(entry: Any, key: str) -> Any:
    if isinstance(entry, Mapping):
        return entry.get(key)
    return getattr(entry, key, None)


def entry_court_id(entry: Any) -> Optional[int]:
    raw = _entry_value(entry, "id")
    try:
        return int(raw) if raw is not None else None
    except (TypeError, ValueError):
        return None


def entry_court_name(entry: Any) -> Optional[str]:
    """Sources name the field either `court_name` or `name`."""
    for key in ("court_name", "name"):
        value = _entry_value(entry, key)
        if value is not None and str(value).strip():
            return str(value).strip()
    return None


def fallback_court_label(court_id: int) -> str:
    return f"Court {court_id}"


@dataclass(frozen=True)
class CourtSource:
    name: str
    entries: Tuple[Any, ...] = ()

    @classmethod
    def of(cls, name: str, entries: Optional[Iterable[Any]]) -> "CourtSource":
        return cls(name=name, entries=tuple(entries or ()))

    def find(self, court_id: int) -> Optional[Any]:
        for entry in self.entries:
            if entry_court_id(entry) == court_id:
                return entry
        return None


@dataclass(frozen=True)
class CourtInfo:
    id: Optional[int]
    name: str
    found: bool
    source: Optional[str] = None


@dataclass(frozen=True)
class CourtDirectory:
    sources: Tuple[CourtSource, ...] = field(default_factory=tuple)

    @classmethod
    def from_sources(
        cls,
        stage: Optional[Iterable[Any]] = None,
        tournament: Optional[Iterable[Any]] = None,
        additional: Optional[Iterable[Any]] = None,
    ) -> "CourtDirectory":
        return cls(
            sources=(
                CourtSource.of(SOURCE_STAGE, stage),
                CourtSource.of(SOURCE_TOURNAMENT, tournament),
                CourtSource.of(SOURCE_ADDITIONAL, additional),
            )
        )

    def court_info(self, court_id: Optional[int]) -> CourtInfo:
        if court_id is None:
            return CourtInfo(id=None, name=NO_COURT_LABEL, found=False)

        for source in self.sources:
            entry = source.find(court_id)
            if entry is None:
                continue
            name = entry_court_name(entry)
            if name:
                return CourtInfo(id=court_id, name=name, found=True, source=source.name)

        return CourtInfo(id=court_id, name=fallback_court_label(court_id), found=False)

    def court_name(self, court_id: Optional[int]) -> str:
        return self.court_info(court_id).name

    def court_exists(self, court_id: Optional[int]) -> bool:
        if court_id is None:
            return False
        return any(source.find(court_id) is not None for source in self.sources)

    def all_courts(self) -> List[CourtInfo]:
        """Every known court, deduplicated by id (first source wins)."""
        seen: List[int] = []
        courts: List[CourtInfo] = []
        for source in self.sources:
            for entry in source.entries:
                court_id = entry_court_id(entry)
                if court_id is None or court_id in seen:
                    continue
                seen.append(court_id)
                courts.append(self.court_info(court_id))
        return courts


def court_names_for(directory: CourtDirectory, court_ids: Sequence[int]) -> dict:
    return {court_id: directory.court_name(court_id) for court_id in court_ids}
