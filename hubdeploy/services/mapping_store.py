import logging
import re
from collections.abc import AsyncIterator
from typing import Any

from hubdeploy.errors import ValidationError
from hubdeploy.models.mappings import MappingHistoryEntry
from hubdeploy.repositories.mappings import MappingRepository

logger = logging.getLogger(__name__)

MAPPING_OBJECT_TYPES = ("contact", "company", "deal", "ticket")

_NON_ALPHANUMERIC = re.compile(r"[^0-9a-z]+")


def normalize_source_field(source_field: str) -> str:
    """Case-fold and strip everything but letters and digits.

    "Email Address", "email_address" and "EMAIL-ADDRESS" all normalize to
    "emailaddress".
    """
    normalized = _NON_ALPHANUMERIC.sub("", (source_field or "").casefold())
    if not normalized:
        raise ValidationError(
            "source_field must contain at least one letter or digit",
            [{"field": "source_field", "message": "Normalizes to an empty string"}],
        )
    return normalized


def validate_object_type(object_type: str) -> str:
    if object_type not in MAPPING_OBJECT_TYPES:
        raise ValidationError(
            f"Unknown object_type '{object_type}'",
            [{"field": "object_type", "message": f"Must be one of: {', '.join(MAPPING_OBJECT_TYPES)}"}],
        )
    return object_type


class CandidateQuery:
    """Async iterable over stored mappings, best first.

    Nothing is read until iteration starts, and each new iteration runs the
    query again, so a held query always reflects the current table.
    """

    def __init__(self, repository: MappingRepository, source_field: str, object_type: str) -> None:
        self._repository = repository
        self.source_field = source_field
        self.object_type = object_type

    def __aiter__(self) -> AsyncIterator[MappingHistoryEntry]:
        return self._repository.iter_candidates(self.source_field, self.object_type).__aiter__()


class MappingStore:
    def __init__(self, repository: MappingRepository) -> None:
        self._repository = repository

    async def record_mapping(
        self,
        source_field: str,
        hubspot_name: str,
        hubspot_type: str,
        field_type: str,
        object_type: str,
        group_name: str | None = None,
        options: list[dict[str, Any]] | None = None,
        confidence: float | None = None,
    ) -> MappingHistoryEntry:
        normalized = normalize_source_field(source_field)
        validate_object_type(object_type)
        if confidence is not None and not 0.0 <= confidence <= 1.0:
            raise ValidationError(
                "confidence must be between 0 and 1",
                [{"field": "confidence", "message": "Out of range"}],
            )

        entry = await self._repository.upsert(
            source_field=normalized,
            hubspot_name=hubspot_name,
            hubspot_type=hubspot_type,
            field_type=field_type,
            object_type=object_type,
            group_name=group_name,
            options=options,
            confidence=confidence,
        )
        logger.info(
            "Recorded field mapping",
            extra={
                "source_field": normalized,
                "hubspot_name": hubspot_name,
                "object_type": object_type,
                "usage_count": entry.usage_count,
            },
        )
        return entry

    def query(self, source_field: str, object_type: str) -> CandidateQuery:
        return CandidateQuery(
            self._repository,
            normalize_source_field(source_field),
            validate_object_type(object_type),
        )
