"""Fake monitored service for probe tests.

Run standalone: uvicorn tests.mocks.fake_upstream:app --port 8002
"""

from fastapi import FastAPI
from fastapi.responses import JSONResponse, PlainTextResponse

app = FastAPI(title="Fake Upstream")

# Flipped by tests to simulate an outage of /flaky
state = {"healthy": True}


@app.get("/ok")
async def ok():
    return {"status": "ok"}


@app.get("/code/{status_code}")
async def fixed_code(status_code: int):
    return PlainTextResponse(f"HTTP {status_code}", status_code=status_code)


@app.get("/flaky")
async def flaky():
    if state["healthy"]:
        return {"status": "UP"}
    return JSONResponse({"status": "DOWN"}, status_code=503)


@app.get("/actuator/health")
async def health_up():
    return {"status": "UP", "components": {"db": {"status": "UP"}}}


@app.get("/actuator/health/down")
async def health_down():
    return {"status": "DOWN"}


@app.get("/actuator/health/missing")
async def health_missing():
    return {"uptime": 1234}


@app.get("/actuator/health/text")
async def health_text():
    return PlainTextResponse("all good")
