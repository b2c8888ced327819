import json
import threading
import uuid
from collections import defaultdict
from collections.abc import Callable, Iterator
from contextlib import ExitStack, contextmanager
from datetime import datetime

from pydantic import ValidationError as ModelValidationError

from dari_insights.errors import ValidationError
from dari_insights.logger import get_logger
from dari_insights.merchants.normalizer import (
    UNKNOWN_MERCHANT,
    alternative_names,
    normalize_merchant,
    similarity,
)
from dari_insights.merchants.store import InMemoryMerchantMappingRepository
from dari_insights.models import (
    CategorySuggestion,
    MappingSource,
    MerchantFeedback,
    MerchantMapping,
)
from dari_insights.repositories import MerchantMappingRepository

logger = get_logger(__name__)

MIN_CONFIDENCE_THRESHOLD = 0.6
SIMILARITY_THRESHOLD = 0.8
MIN_EVIDENCE_SCORE = 3
USER_CONFIRMED_CONFIDENCE = 0.95
CONFIDENCE_STEP = 0.1
MAX_LEARNED_CONFIDENCE = 0.99
MAX_SUGGESTIONS = 3


def _new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


class MerchantMappingService:
    """
    Learned merchant -> category mappings.

    The repository is the only mutable state in the engine. Every
    read-modify-write runs under a lock for the mapping's normalized name, so
    two corrections for the same merchant cannot lose each other's update.
    """

    def __init__(
        self,
        repository: MerchantMappingRepository | None = None,
        similarity_threshold: float = SIMILARITY_THRESHOLD,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.repository = repository if repository is not None else InMemoryMerchantMappingRepository()
        self.similarity_threshold = similarity_threshold
        self.clock = clock
        self._registry_lock = threading.Lock()
        self._key_locks: dict[str, threading.Lock] = {}

    def _lock_for(self, key: str) -> threading.Lock:
        with self._registry_lock:
            return self._key_locks.setdefault(key, threading.Lock())

    @contextmanager
    def _locked(self, *keys: str) -> Iterator[None]:
        # Sorted acquisition keeps multi-key merges deadlock free
        with ExitStack() as stack:
            for key in sorted(set(keys)):
                stack.enter_context(self._lock_for(key))
            yield

    @staticmethod
    def _require_key(merchant_name: str) -> str:
        key = normalize_merchant(merchant_name)
        if key == UNKNOWN_MERCHANT:
            raise ValidationError("Merchant name is required")
        return key

    def create_mapping(
        self,
        merchant_name: str,
        category_id: str,
        confidence: float = 0.5,
        source: MappingSource = MappingSource.AUTO_DETECTED,
    ) -> MerchantMapping:
        key = self._require_key(merchant_name)
        now = self.clock()
        with self._locked(key):
            existing = self.repository.find_by_normalized_name(key)
            if existing is not None:
                if confidence <= existing.confidence:
                    return existing
                updated = existing.model_copy(update={
                    "category_id": category_id,
                    "confidence": confidence,
                    "source": source,
                    "updated_at": now,
                })
                return self.repository.update(updated)

            mapping = MerchantMapping(
                id=_new_id("map"),
                merchant_name=merchant_name.strip(),
                normalized_name=key,
                category_id=category_id,
                confidence=confidence,
                source=source,
                created_at=now,
                updated_at=now,
                alternative_names=tuple(alternative_names(merchant_name)),
            )
            logger.debug("[MAPPING] Created mapping '%s' -> %s", key, category_id)
            return self.repository.create(mapping)

    def _record_use(self, mapping: MerchantMapping) -> MerchantMapping:
        current = self.repository.get_by_id(mapping.id) or mapping
        updated = current.model_copy(update={
            "successful_mappings": current.successful_mappings + 1,
            "last_used_at": self.clock(),
        })
        return self.repository.update(updated)

    def find_best_mapping(self, merchant_name: str | None, track_usage: bool = True) -> MerchantMapping | None:
        """Exact normalized match first, then the best similar mapping above the similarity floor."""
        key = normalize_merchant(merchant_name)
        if key == UNKNOWN_MERCHANT:
            return None

        with self._locked(key):
            exact = self.repository.find_by_normalized_name(key)
            if exact is not None:
                return self._record_use(exact) if track_usage else exact

        candidates = [
            mapping
            for mapping in self.repository.find_similar_mappings(key, threshold=self.similarity_threshold)
            if mapping.confidence >= MIN_CONFIDENCE_THRESHOLD
        ]
        if not candidates:
            return None

        best = max(candidates, key=lambda mapping: similarity(key, mapping.normalized_name) * mapping.confidence)
        if similarity(key, best.normalized_name) < self.similarity_threshold:
            return None
        logger.debug("[MAPPING] '%s' resolved through similar mapping '%s'", key, best.normalized_name)
        if not track_usage:
            return best
        with self._locked(best.normalized_name):
            return self._record_use(best)

    def learn_from_correction(
        self,
        merchant_name: str,
        category_id: str,
        feedback: str | None = None,
    ) -> MerchantMapping:
        """
        Apply a user correction. Repeating a correction that is already in
        place changes nothing, so retries never double-count.
        """
        key = self._require_key(merchant_name)
        now = self.clock()
        with self._locked(key):
            existing = self.repository.find_by_normalized_name(key)
            if existing is None:
                mapping = MerchantMapping(
                    id=_new_id("map"),
                    merchant_name=merchant_name.strip(),
                    normalized_name=key,
                    category_id=category_id,
                    confidence=USER_CONFIRMED_CONFIDENCE,
                    source=MappingSource.USER_CONFIRMED,
                    successful_mappings=1,
                    created_at=now,
                    updated_at=now,
                    alternative_names=tuple(alternative_names(merchant_name)),
                )
                logger.info("[MAPPING] Learned new merchant '%s' -> %s", key, category_id)
                return self.repository.create(mapping)

            if existing.category_id == category_id and existing.source == MappingSource.USER_CONFIRMED:
                return existing

            event = MerchantFeedback(
                id=_new_id("fb"),
                mapping_id=existing.id,
                original_category_id=existing.category_id,
                corrected_category_id=category_id,
                feedback=feedback,
                created_at=now,
            )
            self.repository.record_feedback(event)

            category_changed = existing.category_id != category_id
            names = list(existing.alternative_names)
            raw = merchant_name.strip()
            if raw.lower() != existing.merchant_name.lower() and raw not in names:
                names.append(raw)

            updated = existing.model_copy(update={
                "category_id": category_id,
                "confidence": min(existing.confidence + CONFIDENCE_STEP, MAX_LEARNED_CONFIDENCE),
                "source": MappingSource.USER_CONFIRMED,
                "successful_mappings": existing.successful_mappings + 1,
                "failed_mappings": existing.failed_mappings + (1 if category_changed else 0),
                "alternative_names": tuple(names),
                "user_feedback": existing.user_feedback + (event,),
                "updated_at": now,
            })
            logger.info(
                "[MAPPING] Correction for '%s': %s -> %s (confidence %.2f)",
                key,
                existing.category_id,
                category_id,
                updated.confidence,
            )
            return self.repository.update(updated)

    def suggest_category(self, merchant_name: str) -> list[CategorySuggestion]:
        key = normalize_merchant(merchant_name)
        if key == UNKNOWN_MERCHANT:
            return []

        similar = self.repository.find_similar_mappings(key, threshold=MIN_CONFIDENCE_THRESHOLD, limit=50)
        by_category: dict[str, list[MerchantMapping]] = defaultdict(list)
        for mapping in similar:
            by_category[mapping.category_id].append(mapping)

        suggestions: list[CategorySuggestion] = []
        for category_id, mappings in by_category.items():
            if len(mappings) < MIN_EVIDENCE_SCORE:
                continue
            average = sum(mapping.confidence for mapping in mappings) / len(mappings)
            if average <= MIN_CONFIDENCE_THRESHOLD:
                continue
            suggestions.append(CategorySuggestion(
                category_id=category_id,
                confidence=round(average, 4),
                evidence_count=len(mappings),
                similar_merchants=tuple(mapping.merchant_name for mapping in mappings[:5]),
            ))

        suggestions.sort(key=lambda item: (item.confidence, item.evidence_count), reverse=True)
        return suggestions[:MAX_SUGGESTIONS]

    def build_similarity_index(self) -> dict[str, list[str]]:
        """Normalized name -> other stored names at or above the similarity threshold."""
        names = sorted({mapping.normalized_name for mapping in self.repository.get_all_mappings()})
        index: dict[str, list[str]] = {}
        for name in names:
            index[name] = [
                other for other in names
                if other != name and similarity(name, other) >= self.similarity_threshold
            ]
        return index

    def merge_duplicates(self) -> int:
        """Collapse mappings sharing a normalized name. Returns how many records were removed."""
        removed = 0
        for group in self.repository.find_duplicates():
            key = group[0].normalized_name
            with self._locked(key):
                current = [
                    mapping for mapping in
                    (self.repository.get_by_id(item.id) for item in group)
                    if mapping is not None
                ]
                if len(current) < 2:
                    continue
                best = max(
                    current,
                    key=lambda mapping: (
                        mapping.confidence,
                        mapping.source == MappingSource.USER_CONFIRMED,
                        mapping.updated_at,
                    ),
                )
                others = [mapping for mapping in current if mapping.id != best.id]

                names = list(best.alternative_names)
                feedback = list(best.user_feedback)
                seen_feedback = {item.id for item in feedback}
                last_used = [m.last_used_at for m in current if m.last_used_at is not None]
                for other in others:
                    for name in (other.merchant_name, *other.alternative_names):
                        if name != best.merchant_name and name not in names:
                            names.append(name)
                    for item in other.user_feedback:
                        if item.id not in seen_feedback:
                            feedback.append(item)
                            seen_feedback.add(item.id)

                merged = best.model_copy(update={
                    "successful_mappings": sum(m.successful_mappings for m in current),
                    "failed_mappings": sum(m.failed_mappings for m in current),
                    "alternative_names": tuple(names),
                    "user_feedback": tuple(feedback),
                    "last_used_at": max(last_used) if last_used else None,
                    "updated_at": self.clock(),
                })
                self.repository.update(merged)
                removed += self.repository.delete_bulk(other.id for other in others)

        if removed:
            logger.info("[MAPPING] Merged duplicate mappings, removed %d records.", removed)
        return removed

    def overall_accuracy(self) -> float:
        successful = failed = 0
        for mapping in self.repository.get_all_mappings():
            successful += mapping.successful_mappings
            failed += mapping.failed_mappings
        if successful + failed == 0:
            return 0.0
        return successful / (successful + failed)

    def statistics(self) -> dict[str, float | int]:
        mappings = self.repository.get_all_mappings()
        confirmed = sum(1 for mapping in mappings if mapping.source == MappingSource.USER_CONFIRMED)
        average = sum(mapping.confidence for mapping in mappings) / len(mappings) if mappings else 0.0
        return {
            "total_mappings": len(mappings),
            "user_confirmed": confirmed,
            "average_confidence": round(average, 4),
            "accuracy": round(self.overall_accuracy(), 4),
        }

    def export_mappings(self) -> str:
        payload = [mapping.model_dump(mode="json") for mapping in self.repository.get_all_mappings()]
        return json.dumps(payload, indent=2, ensure_ascii=False)

    def import_mappings(self, payload: str, replace_existing: bool = False) -> int:
        try:
            raw_items = json.loads(payload)
            if not isinstance(raw_items, list):
                raise ValidationError("Mapping export must be a JSON list")
            mappings = [MerchantMapping.model_validate(item) for item in raw_items]
        except (json.JSONDecodeError, ModelValidationError) as exc:
            raise ValidationError(f"Invalid mapping export: {exc}") from exc

        if replace_existing:
            self.repository.delete_all()
            count = self.repository.create_bulk(mappings)
        else:
            fresh = [
                mapping for mapping in mappings
                if self.repository.find_by_normalized_name(mapping.normalized_name) is None
            ]
            count = self.repository.create_bulk(fresh)
        logger.info("[MAPPING] Imported %d merchant mappings (replace=%s).", count, replace_existing)
        return count
