"""
Batch resolution of place names registered during a build.

Names are collected with `register()`, then `resolve()` runs one pass: cached
names are answered from the place store, the rest are looked up through the
provider chain on a bounded thread pool, and the store is saved once at the end.
"""
from __future__ import annotations

import logging
import re
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Dict, Iterable, List, Optional, Set, Tuple

from domain.errors import StorePersistError
from domain.models import PlaceRecord, ResolutionReport, ResolutionState
from services.geocoding import ProviderChain
from services.places_store import PlaceStore
from settings import Settings

logger = logging.getLogger(__name__)

# Province / city / district / prefecture / county / autonomous prefecture or county
_ADMIN_SUFFIX_RE = re.compile(r"(省|市|区|州|县|自治[州县])$")
# Airport-style codes are opaque identifiers
_CODE_RE = re.compile(r"[A-Z]{3}")


def is_opaque_code(name: str) -> bool:
    return _CODE_RE.fullmatch(name) is not None


def normalize_place_name(name: str) -> str:
    """Trim, strip one trailing administrative suffix, lower-case."""
    if not name:
        return ""
    return _ADMIN_SUFFIX_RE.sub("", name.strip()).lower()


class PlaceResolver:
    def __init__(
        self,
        store: PlaceStore,
        chain: ProviderChain,
        max_concurrency: int = 5,
        lookups_enabled: bool = True,
    ):
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be >= 1")
        self.store = store
        self.chain = chain
        self.max_concurrency = max_concurrency
        self.lookups_enabled = lookups_enabled
        self.pending: Set[str] = set()
        self.state = ResolutionState.IDLE
        self._state_lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings: Settings) -> "PlaceResolver":
        return cls(
            PlaceStore(settings.places_store_path),
            ProviderChain.from_settings(settings),
            max_concurrency=settings.max_concurrency,
            lookups_enabled=settings.lookups_enabled,
        )

    def register(self, raw_name: Optional[str]) -> None:
        if not raw_name:
            return
        self.pending.add(raw_name)

    def register_many(self, names: Iterable[Optional[str]]) -> None:
        for name in names:
            self.register(name)

    def resolve(self) -> ResolutionReport:
        with self._state_lock:
            if self.state is ResolutionState.RESOLVING:
                logger.debug("[GEOCODE] resolution already running, skipping")
                return ResolutionReport(skipped=True)
            self.state = ResolutionState.RESOLVING
        try:
            return self._run_pass()
        finally:
            with self._state_lock:
                self.state = ResolutionState.IDLE

    def _run_pass(self) -> ResolutionReport:
        self.store.load()
        names = sorted(self.pending)
        self.pending = set()
        report = ResolutionReport()
        logger.info("[GEOCODE] resolving %d places", len(names))

        # query string -> raw names waiting on it
        jobs: Dict[str, List[str]] = {}
        for name in names:
            query = self._plan(name, report)
            if query is not None:
                jobs.setdefault(query, []).append(name)

        if jobs and not self.lookups_enabled:
            logger.info("[GEOCODE] lookups disabled, %d places left unresolved", len(jobs))
            for raw_names in jobs.values():
                report.unresolved.extend(raw_names)
            jobs = {}

        report.dispatched = len(jobs)
        for query, result in self._dispatch(jobs):
            raw_names = jobs[query]
            if result is None:
                for name in raw_names:
                    logger.warning("[GEOCODE] could not resolve: %s", name)
                report.unresolved.extend(raw_names)
                continue
            # one canonical record per answer; other spellings alias to it
            place_id = self.store.set(raw_names[0], result)
            for name in raw_names[1:]:
                self.store.add_alias(name, place_id)
            if query not in raw_names:
                self.store.add_alias(query, place_id)
            report.resolved += len(raw_names)

        if report.resolved > 0:
            try:
                self.store.save()
                logger.info("[GEOCODE] saved %d new places to %s", report.resolved, self.store.path)
            except StorePersistError as exc:
                logger.error("[GEOCODE] %s", exc)
                report.save_error = str(exc)

        logger.info(
            "[GEOCODE] resolution complete. cached=%d new=%d unresolved=%d",
            report.cached,
            report.resolved,
            len(report.unresolved),
        )
        return report

    def _plan(self, name: str, report: ResolutionReport) -> Optional[str]:
        """Answer `name` from the store if possible, else return the query to send."""
        if self.store.get(name) is not None:
            report.cached += 1
            return None
        query = name if is_opaque_code(name) else normalize_place_name(name)
        # a bare suffix such as "市" normalizes away; query the raw spelling instead
        query = query or name.strip()
        if not query:
            logger.warning("[GEOCODE] ignoring blank place name: %r", name)
            report.unresolved.append(name)
            return None
        if query != name:
            hit = self.store.get(query)
            if hit is not None:
                self.store.add_alias(name, hit.id or query)
                report.cached += 1
                return None
        return query

    def _dispatch(
        self, jobs: Dict[str, List[str]]
    ) -> Iterable[Tuple[str, Optional[PlaceRecord]]]:
        if not jobs:
            return
        with ThreadPoolExecutor(max_workers=self.max_concurrency) as pool:
            futures = {}
            for query, raw_names in jobs.items():
                logger.info("[GEOCODE] fetching coordinates for: %s", raw_names[0])
                futures[pool.submit(self.chain.resolve, query)] = query
            for future in as_completed(futures):
                query = futures[future]
                try:
                    result = future.result()
                except Exception:
                    logger.exception("[GEOCODE] lookup crashed for %s", query)
                    result = None
                yield query, result

    def get_resolved(self, name: str) -> Optional[PlaceRecord]:
        return self.store.get(name)

    def coords_for(self, names: Iterable[str]) -> Dict[str, List[float]]:
        """Map each resolved name to [lng, lat]; unresolved names are left out."""
        out: Dict[str, List[float]] = {}
        for name in names:
            record = self.store.get(name)
            if record is not None:
                out[name] = [record.coords[0], record.coords[1]]
        return out
