"""
Services module - capability provider catalog, codecs and reasoning model clients

Only the catalog is re-exported here. The codec and reasoning model modules
depend on orchestration.gateway and are imported from their own modules.
"""
from .agent_catalog import (
    CapabilityProviderDescriptor,
    ParameterField,
    ProviderCatalog,
    get_catalog,
    kind_family,
)

__all__ = [
    "CapabilityProviderDescriptor",
    "ParameterField",
    "ProviderCatalog",
    "get_catalog",
    "kind_family",
]
