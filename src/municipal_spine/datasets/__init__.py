"""Dataset descriptors and the catalog of registered datasets."""

from municipal_spine.datasets.catalog import CATALOG, get_dataset, list_datasets
from municipal_spine.datasets.schema import (
    MUNICIPALITY_CODE,
    MUNICIPALITY_NORMALIZED,
    DatasetSpec,
    FactSpec,
    FieldSpec,
    ReferenceGate,
    ResourceSpec,
    Validator,
)

__all__ = [
    "CATALOG",
    "DatasetSpec",
    "FactSpec",
    "FieldSpec",
    "MUNICIPALITY_CODE",
    "MUNICIPALITY_NORMALIZED",
    "ReferenceGate",
    "ResourceSpec",
    "Validator",
    "get_dataset",
    "list_datasets",
]
