"""
Services for authentication, token management, storage, inference clients
and analysis records.
"""
from veriluxe.services.auth_service import (
    hash_password,
    verify_password,
    needs_rehash,
    authenticate_user,
)
from veriluxe.services.session_service import token_store, TokenStore
from veriluxe.services.storage_service import get_storage_service, StorageService
from veriluxe.services.analysis_service import AnalysisService, can_view, can_modify

__all__ = [
    "hash_password",
    "verify_password",
    "needs_rehash",
    "authenticate_user",
    "token_store",
    "TokenStore",
    "get_storage_service",
    "StorageService",
    "AnalysisService",
    "can_view",
    "can_modify",
]
