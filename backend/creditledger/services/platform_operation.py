"""Run an AI operation under a resolved execution handle.

    async with platform_operation(account_id, PlatformOperation.CV_GENERATE) as handle:
        result = await call_model(handle.provider, handle.model, handle.api_key, ...)

If the body raises after credits were debited, they are refunded and the
exception propagates unchanged.
"""
from contextlib import asynccontextmanager
from typing import Optional
import logging

from creditledger.models.account import ExecutionMode
from creditledger.services.provider_resolver import Operation, provider_resolver

logger = logging.getLogger(__name__)


@asynccontextmanager
async def platform_operation(
    account_id: str,
    operation: Operation,
    related_resource_id: Optional[str] = None,
):
    handle = await provider_resolver.resolve(
        account_id,
        operation=operation,
        related_resource_id=related_resource_id,
    )
    try:
        yield handle
    except Exception:
        if handle.mode == ExecutionMode.PLATFORM and handle.charged > 0:
            logger.warning(f"{handle.operation} failed for account {account_id}, refunding {handle.charged} credit(s)")
            await provider_resolver.refund(
                account_id,
                operation,
                cost=handle.charged,
                related_resource_id=related_resource_id,
            )
        raise
