"""HTTP service entrypoint for the background worker (platforms that require a port)."""

from __future__ import annotations

import asyncio
import contextlib
import os

from fastapi import FastAPI

from slotsync.services.renewal_scheduler import RenewalScheduler
from slotsync.worker import worker_loop

_scheduler = RenewalScheduler()


@contextlib.asynccontextmanager
async def lifespan(app: FastAPI):
    worker_task = asyncio.create_task(worker_loop())
    _scheduler.start()
    yield
    await _scheduler.stop()
    worker_task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await worker_task


app = FastAPI(lifespan=lifespan)


@app.get("/health")
def health() -> dict:
    return {"status": "ok", "renewal_scheduler": _scheduler.is_running}


def main() -> None:
    import uvicorn

    port = int(os.getenv("PORT", "8080"))
    host = os.getenv("HOST", "0.0.0.0")
    # nosec B104 - container platforms require binding to all interfaces.
    uvicorn.run("slotsync.worker_service:app", host=host, port=port)


if __name__ == "__main__":
    main()
