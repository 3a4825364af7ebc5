from .sync_gateway import (
    ChangesTimeout,
    DocumentNotFoundError,
    DocumentStoreError,
    RevisionConflictError,
    SyncGatewayClient,
    build_sync_gateway_client,
)

__all__ = [
    "ChangesTimeout",
    "DocumentNotFoundError",
    "DocumentStoreError",
    "RevisionConflictError",
    "SyncGatewayClient",
    "build_sync_gateway_client",
]
