from contextlib import aclosing

from hubdeploy.errors import ValidationError
from hubdeploy.models.mappings import MappingHistoryEntry
from hubdeploy.services.mapping_store import MappingStore


async def recommend(
    store: MappingStore,
    source_field: str,
    object_type: str,
    top_n: int = 3,
) -> list[MappingHistoryEntry]:
    """Return up to top_n historical mappings for an exact normalized match.

    An unseen field yields an empty list. Nothing is written.
    """
    if top_n < 1:
        raise ValidationError(
            "top_n must be at least 1",
            [{"field": "top_n", "message": "Must be a positive integer"}],
        )

    results: list[MappingHistoryEntry] = []
    # closing early releases the cursor's connection
    candidates = aiter(store.query(source_field, object_type))
    async with aclosing(candidates):
        async for entry in candidates:
            results.append(entry)
            if len(results) >= top_n:
                break
    return results
