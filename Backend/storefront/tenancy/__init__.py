"""
Multi-tenancy package.

This package provides tenant isolation primitives. A tenant is one store
owner and everything keyed by their user id.

Modules:
    context: StoreContext resolution from slug path or subdomain host
    queries: Tenant-scoped query helpers
"""

from .context import (
    StoreContext,
    StoreResolutionSource,
    get_store_context,
    resolve_store_from_slug,
    extract_slug_from_path,
    extract_slug_from_host,
)

from .queries import (
    # Composable helpers
    scoped_select,
    tenant_filter,
    require_owned,
    # Category queries
    list_categories,
    find_category_by_name,
    # Product queries
    list_products,
    get_products_by_ids,
)

__all__ = [
    # Context
    "StoreContext",
    "StoreResolutionSource",
    "get_store_context",
    "resolve_store_from_slug",
    "extract_slug_from_path",
    "extract_slug_from_host",
    # Query helpers
    "scoped_select",
    "tenant_filter",
    "require_owned",
    "list_categories",
    "find_category_by_name",
    "list_products",
    "get_products_by_ids",
]
