"""AWS Lambda entry point.

Mangum translates API Gateway HTTP API (v2) events into ASGI. The lifespan
runs so the upstream credential is resolved the same way as under uvicorn;
streaming requests are rejected by the router on Lambda.
"""

from mangum import Mangum

from codex_gateway.main import app

handler = Mangum(app, lifespan="auto")
