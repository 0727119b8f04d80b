"""
Shared API dependencies: the debt manager and domain error mapping
"""

import logging
from typing import Optional
from fastapi import HTTPException, Request

from ..config import DebtLedgerConfig, get_config
from ..debts import DebtManager
from ..exceptions import DebtNotFoundError, InstallmentNotFoundError
from ..storage import create_storage

logger = logging.getLogger(__name__)


def build_manager(config: Optional[DebtLedgerConfig] = None) -> DebtManager:
    """Wire a DebtManager to the storage named by the configuration"""
    config = config or get_config()
    storage = create_storage(config.database_url)
    logger.info("Debt manager using storage %s", config.database_url)
    return DebtManager(storage, config)


def get_manager(request: Request) -> DebtManager:
    """Debt manager of the running app, created on first use"""
    manager = getattr(request.app.state, "manager", None)
    if manager is None:
        manager = build_manager()
        request.app.state.manager = manager
    return manager


def http_error(error: Exception) -> HTTPException:
    """Map a domain error to its HTTP status"""
    if isinstance(error, (DebtNotFoundError, InstallmentNotFoundError)):
        return HTTPException(status_code=404, detail=str(error))
    return HTTPException(status_code=400, detail=str(error))
