"""Sanctions list compliance provider.

Screens the names found in an entity payload against a tenant-supplied list
of sanctioned names using fuzzy matching. Transliteration differences
("Mohammad Ahmad" vs "Mohammed Ahmed") and reordered tokens are common, so
two strategies are scored and the higher wins:
  - fuzz.ratio(): overall character-level similarity
  - fuzz.token_sort_ratio(): ignores token order

The best similarity (0-100) is scaled onto the 0-10 risk range. Anything
at or above the configured threshold is a match and the entity is not
approved; weaker partial matches still raise the risk score so that the
aggregate can push borderline entities into review.
"""

import asyncio
import re
from typing import Any, Dict, List, Tuple

from pydantic import BaseModel, Field
from thefuzz import fuzz

from finops.models import ProviderResponse
from finops.providers.base import ComplianceProvider

# Similarities below this floor are noise and contribute no risk.
_NOISE_FLOOR = 50


class SanctionsListConfig(BaseModel):
    entries: List[str] = Field(min_length=1)
    threshold: int = Field(default=85, ge=1, le=100)
    name_fields: List[str] = Field(default_factory=lambda: ["name", "legal_name", "aliases"])


def _normalize_name(name: str) -> str:
    """Lowercase, strip, and collapse multiple spaces."""
    return re.sub(r"\s+", " ", name.strip().lower())


def _collect_names(entity_data: Dict[str, Any], fields: List[str]) -> List[str]:
    names: List[str] = []
    for field in fields:
        value = entity_data.get(field)
        if isinstance(value, str) and value.strip():
            names.append(value)
        elif isinstance(value, (list, tuple)):
            names.extend(v for v in value if isinstance(v, str) and v.strip())
    return names


class SanctionsListProvider(ComplianceProvider):
    config_model = SanctionsListConfig

    def __init__(self, name: str, config: SanctionsListConfig) -> None:
        super().__init__(name, config)
        self._entries: List[Tuple[str, str]] = [
            (entry, _normalize_name(entry)) for entry in config.entries
        ]

    async def screen_entity(self, entity_type: str, entity_data: Dict[str, Any]) -> ProviderResponse:
        names = _collect_names(entity_data, self.config.name_fields)
        if not names:
            return ProviderResponse(
                success=False,
                error=f"No screenable name in {entity_type} payload",
            )

        # Matching is CPU-bound; keep the event loop free so timeouts fire
        loop = asyncio.get_running_loop()
        best, flags = await loop.run_in_executor(None, self._match, names)

        risk_score = round(best / 10, 1) if best >= _NOISE_FLOOR else 0.0
        return ProviderResponse(
            success=True,
            data={
                "risk_score": risk_score,
                "approved": not flags,
                "flags": flags,
                "best_similarity": best,
            },
        )

    def _match(self, names: List[str]) -> Tuple[int, List[str]]:
        best = 0
        flags: List[str] = []
        for name in names:
            normalized_name = _normalize_name(name)
            for sanctioned, normalized_sanctioned in self._entries:
                score = max(
                    fuzz.ratio(normalized_name, normalized_sanctioned),
                    fuzz.token_sort_ratio(normalized_name, normalized_sanctioned),
                )
                best = max(best, score)
                if score >= self.config.threshold:
                    flag = f"sanctions_match:{sanctioned}"
                    if flag not in flags:
                        flags.append(flag)
        return best, flags
