"""Admin API endpoints with simple token auth."""

from __future__ import annotations

from dataclasses import asdict
from typing import TYPE_CHECKING

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from pydantic import BaseModel

if TYPE_CHECKING:
    from otp_relay.containers import AppContainer

router = APIRouter(prefix="/admin", tags=["admin"])


class CaptchaAnswer(BaseModel):
    """Operator answer to a pending CAPTCHA."""

    solution: str


def _get_admin_token(request: Request) -> str:
    container: AppContainer = request.app.state.container
    return container.settings.admin_token


async def require_admin(
    x_admin_token: str | None = Header(default=None),
    admin_token: str = Depends(_get_admin_token),
) -> None:
    """Ensure requests include a valid admin token."""
    if not x_admin_token or x_admin_token != admin_token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED)


@router.get("/stats", dependencies=[Depends(require_admin)])
async def stats(request: Request) -> dict[str, object]:
    """Return inventory, OTP and user totals."""
    container: AppContainer = request.app.state.container
    totals: dict[str, object] = asdict(container.inventory_service.statistics())
    totals["pending_captchas"] = len(container.captcha_resolver.pending_challenges())
    return totals


@router.post("/sync/{job}", dependencies=[Depends(require_admin)])
async def run_job(job: str, request: Request) -> dict[str, str]:
    """Run a scheduler job immediately."""
    container: AppContainer = request.app.state.container
    if job not in container.scheduler.jobs:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND)
    ran = await container.scheduler.run_now(job)
    return {"job": job, "status": "completed" if ran else "skipped"}


@router.get("/captcha", dependencies=[Depends(require_admin)])
async def pending_captchas(request: Request) -> dict[str, object]:
    """Return CAPTCHAs waiting for an operator answer."""
    container: AppContainer = request.app.state.container
    return {
        "challenges": [
            {
                "id": challenge.id,
                "raw_text": challenge.raw_text,
                "created_at": challenge.created_at.isoformat(),
            }
            for challenge in container.captcha_resolver.pending_challenges()
        ]
    }


@router.post("/captcha/{challenge_id}", dependencies=[Depends(require_admin)])
async def answer_captcha(
    challenge_id: str, answer: CaptchaAnswer, request: Request
) -> dict[str, str]:
    """Submit an answer for a pending CAPTCHA."""
    container: AppContainer = request.app.state.container
    if not container.captcha_resolver.submit_solution(challenge_id, answer.solution):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND)
    return {"status": "accepted"}
