"""Optional error reporting to Sentry.

Enabled only when ``settings.sentry_dsn`` is set. Request bodies carry
base64 images and are never attached to events.
"""

import logging

from imagegate.core.config import settings

logger = logging.getLogger(__name__)


def init_sentry() -> bool:
    """Start the Sentry client for the API process. Returns whether reporting is on."""
    if not settings.sentry_dsn:
        logger.debug("Error reporting disabled: no Sentry DSN")
        return False

    import sentry_sdk
    from sentry_sdk.integrations.fastapi import FastApiIntegration
    from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

    sample_rate = 0.1 if settings.app_env == "production" else 1.0
    sentry_sdk.init(
        dsn=settings.sentry_dsn,
        environment=settings.app_env,
        release=f"imagegate@{settings.app_version}" if settings.app_version else None,
        traces_sample_rate=sample_rate,
        # Client IPs and user ids stay out of events
        send_default_pii=False,
        max_request_body_size="never",
        integrations=[
            FastApiIntegration(transaction_style="endpoint"),
            SqlalchemyIntegration(),
        ],
    )
    logger.info("Sentry reporting on (env=%s, traces=%.0f%%)", settings.app_env, sample_rate * 100)
    return True
