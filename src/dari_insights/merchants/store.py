import json
import os
import threading
from collections import defaultdict
from collections.abc import Iterable

from pydantic import ValidationError as ModelValidationError
from rapidfuzz import fuzz, process

from dari_insights.errors import NotFoundError
from dari_insights.logger import get_logger
from dari_insights.models import MerchantFeedback, MerchantMapping

logger = get_logger(__name__)


class InMemoryMerchantMappingRepository:
    """Merchant mappings keyed by id, with lookups by raw and normalized name."""

    def __init__(self, mappings: Iterable[MerchantMapping] = ()) -> None:
        self._lock = threading.RLock()
        self._mappings: dict[str, MerchantMapping] = {}
        self._feedback: list[MerchantFeedback] = []
        for mapping in mappings:
            self._mappings[mapping.id] = mapping

    def _changed(self) -> None:
        """Hook for persistent subclasses."""

    def get_by_id(self, mapping_id: str) -> MerchantMapping | None:
        with self._lock:
            return self._mappings.get(mapping_id)

    def get_by_merchant_name(self, merchant_name: str) -> MerchantMapping | None:
        wanted = merchant_name.strip().lower()
        with self._lock:
            for mapping in self._mappings.values():
                if mapping.merchant_name.lower() == wanted:
                    return mapping
                if wanted in (name.lower() for name in mapping.alternative_names):
                    return mapping
        return None

    def find_by_normalized_name(self, normalized_name: str) -> MerchantMapping | None:
        with self._lock:
            candidates = [m for m in self._mappings.values() if m.normalized_name == normalized_name]
        if not candidates:
            return None
        return max(candidates, key=lambda mapping: (mapping.confidence, mapping.updated_at))

    def find_similar_mappings(
        self, normalized_name: str, threshold: float = 0.6, limit: int = 10
    ) -> list[MerchantMapping]:
        with self._lock:
            choices = {mapping_id: m.normalized_name for mapping_id, m in self._mappings.items()}
            if not choices:
                return []
            results = process.extract(
                normalized_name,
                choices,
                scorer=fuzz.token_sort_ratio,
                score_cutoff=threshold * 100,
                limit=limit,
            )
            return [self._mappings[mapping_id] for _, _, mapping_id in results]

    def create(self, mapping: MerchantMapping) -> MerchantMapping:
        with self._lock:
            self._mappings[mapping.id] = mapping
            self._changed()
        return mapping

    def update(self, mapping: MerchantMapping) -> MerchantMapping:
        with self._lock:
            if mapping.id not in self._mappings:
                raise NotFoundError("Merchant mapping", mapping.id)
            self._mappings[mapping.id] = mapping
            self._changed()
        return mapping

    def delete(self, mapping_id: str) -> None:
        with self._lock:
            if self._mappings.pop(mapping_id, None) is None:
                raise NotFoundError("Merchant mapping", mapping_id)
            self._changed()

    def create_bulk(self, mappings: Iterable[MerchantMapping]) -> int:
        count = 0
        with self._lock:
            for mapping in mappings:
                self._mappings[mapping.id] = mapping
                count += 1
            self._changed()
        return count

    def delete_bulk(self, mapping_ids: Iterable[str]) -> int:
        count = 0
        with self._lock:
            for mapping_id in mapping_ids:
                if self._mappings.pop(mapping_id, None) is not None:
                    count += 1
            self._changed()
        return count

    def delete_all(self) -> None:
        with self._lock:
            self._mappings.clear()
            self._feedback.clear()
            self._changed()

    def find_duplicates(self) -> list[list[MerchantMapping]]:
        """Groups of two or more mappings sharing a normalized name."""
        groups: dict[str, list[MerchantMapping]] = defaultdict(list)
        with self._lock:
            for mapping in self._mappings.values():
                groups[mapping.normalized_name].append(mapping)
        return [group for group in groups.values() if len(group) > 1]

    def get_all_mappings(self) -> list[MerchantMapping]:
        with self._lock:
            return sorted(self._mappings.values(), key=lambda mapping: mapping.normalized_name)

    def record_feedback(self, feedback: MerchantFeedback) -> None:
        with self._lock:
            self._feedback.append(feedback)
            self._changed()

    def get_feedback(self, mapping_id: str | None = None) -> list[MerchantFeedback]:
        with self._lock:
            if mapping_id is None:
                return list(self._feedback)
            return [item for item in self._feedback if item.mapping_id == mapping_id]


class JsonMerchantMappingRepository(InMemoryMerchantMappingRepository):
    """In-memory repository mirrored to a JSON file after every change."""

    def __init__(self, data_path: str = "merchant_mappings.json") -> None:
        super().__init__()
        self.data_path = data_path
        self.load()

    def load(self) -> None:
        if not os.path.exists(self.data_path):
            return
        try:
            with open(self.data_path, encoding="utf-8") as handle:
                payload = json.load(handle)
            mappings = [MerchantMapping.model_validate(item) for item in payload.get("mappings", [])]
            feedback = [MerchantFeedback.model_validate(item) for item in payload.get("feedback", [])]
        except (json.JSONDecodeError, ModelValidationError, AttributeError) as exc:
            logger.error("[MAPPING] Could not read %s, starting empty: %s", self.data_path, exc)
            return
        with self._lock:
            self._mappings = {mapping.id: mapping for mapping in mappings}
            self._feedback = feedback
        logger.info("[MAPPING] Loaded %d merchant mappings from %s", len(mappings), self.data_path)

    def save(self) -> None:
        with self._lock:
            payload = {
                "mappings": [m.model_dump(mode="json") for m in self._mappings.values()],
                "feedback": [f.model_dump(mode="json") for f in self._feedback],
            }
        tmp_path = f"{self.data_path}.tmp"
        with open(tmp_path, "w", encoding="utf-8") as handle:
            json.dump(payload, handle, indent=2, ensure_ascii=False)
        os.replace(tmp_path, self.data_path)

    def _changed(self) -> None:
        self.save()
