"""Server time endpoint; clients compute countdowns from this, not their own clock."""
from typing import Annotated

from fastapi import APIRouter, Depends

from exam_engine.dependencies import get_clock
from exam_engine.utils.time_utils import Clock

router = APIRouter(prefix="/api", tags=["clock"])


@router.get("/server-time")
def server_time(clock: Annotated[Clock, Depends(get_clock)]) -> dict[str, object]:
    now = clock.now()
    return {"serverTime": now.isoformat(), "epochMs": int(now.timestamp() * 1000)}
