"""Domain records exchanged with the store and the merge policies applied to them."""

from speccheck_store.domain.merge import (
    merge_component_cache,
    merge_datasheet,
    merge_saved_component,
    with_tag,
    without_tag,
)
from speccheck_store.domain.models import (
    BoundingBox,
    Claim,
    ComponentCacheEntry,
    ComponentCacheStats,
    ComponentCategory,
    ComponentSpecs,
    ConsentRecord,
    DataSource,
    DatasheetCacheEntry,
    DatasheetCacheStats,
    OfflineBundle,
    SavedComponentEntry,
    ScanComponent,
    ScanHistoryEntry,
    ScanHistoryStats,
    ScanHistorySummary,
    SourceType,
    SpecValue,
    Verdict,
)

__all__ = [
    "BoundingBox",
    "Claim",
    "ComponentCacheEntry",
    "ComponentCacheStats",
    "ComponentCategory",
    "ComponentSpecs",
    "ConsentRecord",
    "DataSource",
    "DatasheetCacheEntry",
    "DatasheetCacheStats",
    "OfflineBundle",
    "SavedComponentEntry",
    "ScanComponent",
    "ScanHistoryEntry",
    "ScanHistoryStats",
    "ScanHistorySummary",
    "SourceType",
    "SpecValue",
    "Verdict",
    "merge_component_cache",
    "merge_datasheet",
    "merge_saved_component",
    "with_tag",
    "without_tag",
]
