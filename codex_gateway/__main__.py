"""Run the gateway with uvicorn: ``python -m codex_gateway``.

The credential is resolved before the server starts; without one the
process exits with status 1 instead of serving requests it cannot forward.
"""

import sys

import uvicorn

from codex_gateway.config.settings import get_settings
from codex_gateway.logging.audit import setup_logging
from codex_gateway.main import create_app, load_credential
from codex_gateway.security.credentials import CredentialError


def main() -> int:
    settings = get_settings()
    logger = setup_logging(settings)

    try:
        credential = load_credential(settings)
    except CredentialError as e:
        logger.critical("Failed to start gateway", extra={"audit_data": {"error": str(e)}})
        return 1

    app = create_app(settings=settings, credential=credential)
    logger.info(
        f"Codex gateway listening on http://{settings.bind}:{settings.port}",
        extra={"audit_data": {"upstream": settings.codex_upstream_base_url}},
    )
    uvicorn.run(
        app,
        host=settings.bind,
        port=settings.port,
        log_level=settings.log_level.lower(),
        server_header=False,
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
