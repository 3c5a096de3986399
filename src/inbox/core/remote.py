"""Failure policy for remote mutation calls.

Every remote call the inbox core issues goes through ``guarded_call``: the
call's failure is local and recoverable, so it is logged, the caller's
rollback (if any) is applied, and an ``ErrorNotice`` is surfaced. Nothing is
re-raised into the event loop.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence

from src.common.api.protocol import MailboxAPIError
from src.common.mailbox.notifications import NotificationCenter

logger = logging.getLogger(__name__)


async def guarded_call(
    call: Callable[[], Awaitable[None]],
    *,
    action: str,
    entity_ids: Sequence[str],
    notifications: NotificationCenter,
    failure_message: str,
    rollback: Callable[[], None] | None = None,
) -> bool:
    """Await one remote call and apply the failure policy.

    Args:
        call: Zero-argument callable returning the remote call awaitable.
        action: Action name for logs and the error notice.
        entity_ids: Entities the call targets.
        notifications: Where the error notice is surfaced.
        failure_message: Toast text shown on failure.
        rollback: Reverts the optimistic state on failure. None means the
            optimistic state is kept even when the call fails.

    Returns:
        True if the call succeeded.
    """
    try:
        await call()
    except asyncio.CancelledError:
        raise
    except MailboxAPIError as exc:
        logger.warning("%s failed for %s: %s", action, list(entity_ids), exc)
        detail = getattr(exc, "detail", None) or str(exc)
    except Exception as exc:
        logger.exception("%s raised unexpectedly for %s", action, list(entity_ids))
        detail = str(exc)
    else:
        logger.debug("%s succeeded for %s", action, list(entity_ids))
        return True

    if rollback is not None:
        rollback()
    notifications.error(
        failure_message,
        action=action,
        entity_ids=entity_ids,
        detail=detail,
        rolled_back=rollback is not None,
    )
    return False
