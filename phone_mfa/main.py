import logging
import os
import sys

from dotenv import load_dotenv
from fastapi import FastAPI

# Load environment variables from .env file before settings are read
load_dotenv()

from .core.config import settings, validate_config  # noqa: E402
from .core.env import get_env_name, is_local_env  # noqa: E402
from .db import init_db  # noqa: E402
from .exception_handlers import register_exception_handlers  # noqa: E402
from .routers.phone_mfa import mfa_router, phone_login_router  # noqa: E402

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    handlers=[
        logging.StreamHandler(sys.stdout)
    ]
)

logger = logging.getLogger("phone_mfa")

env = get_env_name()
if settings.SENTRY_DSN and not is_local_env():
    import sentry_sdk
    from sentry_sdk.integrations.fastapi import FastApiIntegration
    from sentry_sdk.integrations.logging import LoggingIntegration
    from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

    try:
        sentry_sdk.init(
            dsn=settings.SENTRY_DSN,
            integrations=[
                FastApiIntegration(),
                SqlalchemyIntegration(),
                LoggingIntegration(level=logging.INFO, event_level=logging.ERROR),
            ],
            traces_sample_rate=0.1,
            environment=env,
            # Phone numbers and codes must not reach Sentry
            send_default_pii=False,
        )
        logger.info(f"Sentry error tracking initialized for environment: {env}")
    except Exception as e:
        logger.error(f"Failed to initialize Sentry: {e}", exc_info=True)
elif settings.SENTRY_DSN:
    logger.info("Sentry DSN configured but not initializing in local environment")

validate_config()

app = FastAPI(title="Phone MFA", version="1.0.0")

register_exception_handlers(app)

app.include_router(mfa_router)
app.include_router(phone_login_router)


@app.on_event("startup")
async def on_startup():
    if os.getenv("SKIP_DB_INIT", "false").lower() == "true":
        logger.info("[STARTUP] Skipping table creation (SKIP_DB_INIT=true)")
        return
    init_db()
    logger.info(f"[STARTUP] Phone MFA service started (env={env}, provider={settings.OTP_PROVIDER})")


@app.get("/health")
async def health():
    """Liveness check. Never touches the database or Redis."""
    return {
        "ok": True,
        "service": "phone-mfa",
        "status": "healthy",
    }
