"""Session lifecycle — one Mailbox per logged-in user, torn down explicitly."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from mailsort.api.client import mailsort_client
from mailsort.cache.mailbox import Mailbox
from mailsort.config import Settings

logger = logging.getLogger(__name__)


@asynccontextmanager
async def mailbox_session(settings: Settings) -> AsyncIterator[Mailbox]:
    """Open a backend connection and yield an empty Mailbox bound to it.

    Leaving the block is the logout: the cache is cleared before the
    connection closes, whether the block exited normally or not.

    Example::

        async with mailbox_session(Settings.from_env()) as mailbox:
            snapshot = await mailbox.refresh()
    """
    async with mailsort_client(settings) as client:
        mailbox = Mailbox(client, settings)
        logger.info("Session started for %s", client.user_email)
        try:
            yield mailbox
        finally:
            mailbox.clear_cache()
            logger.info("Session ended for %s", client.user_email)
