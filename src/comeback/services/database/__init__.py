"""Database connection and models."""

from src.comeback.services.database.connection import (
    create_flow_client,
    get_supabase_admin_client,
    get_supabase_client,
    init_supabase_clients,
    set_supabase_clients,
)
from src.comeback.services.database.utils import SupabaseQueryBuilder, get_db, get_query_builder

__all__ = [
    "create_flow_client",
    "get_supabase_client",
    "get_supabase_admin_client",
    "init_supabase_clients",
    "set_supabase_clients",
    "SupabaseQueryBuilder",
    "get_db",
    "get_query_builder",
]
