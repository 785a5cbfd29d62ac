"""Entry point for rules auth service."""

import uvicorn

from rules_auth.config import get_settings

if __name__ == "__main__":
    settings = get_settings()
    uvicorn.run(
        "rules_auth.app:create_app",
        factory=True,
        host=settings.host,
        port=settings.port,
        reload=settings.reload,
        log_level=settings.log_level.lower(),
    )
