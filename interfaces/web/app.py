from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from typing import Callable, Mapping, Optional

import anyio.to_thread
from fastapi import APIRouter, Depends, FastAPI, Header, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import PlainTextResponse, RedirectResponse, Response

from application.phases import advance_phase, retreat_phase
from application.results import OperationResult
from application.services import (
    OverviewResult,
    build_overview,
    create_team,
    delete_team,
    join_team,
    leave_team,
)
from application.transactions import TransactionRunner
from application.voting import parse_ballot, parse_team_id, submit_vote
from domain.errors import StoreBusyError, StoreError
from domain.models import User
from domain.repositories import Transaction
from infrastructure.config import Config
from infrastructure.db.store import SessionPool, SqliteStore

from .schemas import OverviewResponse, to_overview_response

logger = logging.getLogger(__name__)

UnitOfWork = Callable[[Transaction], OperationResult]


def _resolve_email(header_value: Optional[str], config: Config) -> Optional[str]:
    """
    The identity of the caller.

    In production `X-Email` is set by an authenticating proxy. For local
    development a fallback can be configured.
    """

    if header_value:
        return header_value
    return config.unsafe_default_email


def _parse_team_id(form: Mapping[str, object]) -> Optional[int]:
    return parse_team_id(str(form.get("team_id", "")).strip())


def create_web_app(config: Config, store: Optional[SqliteStore] = None) -> FastAPI:
    """
    Configure and return the FastAPI application.

    Every request runs as one unit of work in a transaction, on a session
    checked out from a pool with one slot per worker thread.
    """

    if store is None:
        store = SqliteStore(config.db_path, config.db_busy_timeout_ms)
    sessions = SessionPool(store, config.num_threads)
    prefix = config.url_prefix

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Sync work runs on the threadpool; its size is the number of workers.
        anyio.to_thread.current_default_thread_limiter().total_tokens = config.num_threads
        logger.info("Serving with %d worker thread(s) under %r", config.num_threads, prefix or "/")
        yield
        sessions.close_all()

    app = FastAPI(title="Hackathon team formation and voting", lifespan=lifespan)
    app.state.sessions = sessions
    router = APIRouter(prefix=prefix)

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start_time = time.perf_counter()
        email = _resolve_email(request.headers.get("x-email"), config) or "-"
        response = await call_next(request)
        logger.info(
            "%s %s %s -> %d [%.3f ms]",
            request.method,
            request.url.path,
            email,
            response.status_code,
            (time.perf_counter() - start_time) * 1e3,
        )
        return response

    def get_user(x_email: Optional[str] = Header(default=None)) -> User:
        email = _resolve_email(x_email, config)
        if email is None:
            raise HTTPException(status_code=401, detail="Missing authentication header.")
        return User(email=email, is_admin=email == config.admin_email)

    def run_unit_of_work(unit_of_work: UnitOfWork) -> OperationResult:
        try:
            session = sessions.acquire()
        except StoreBusyError:
            return OperationResult.service_unavailable(
                "The database is busy, wait a few seconds and try again."
            )
        except StoreError:
            logger.exception("Failed to open database session")
            return OperationResult(status=500, error_message="Internal server error.")

        try:
            result = TransactionRunner(session).run(unit_of_work)
        except StoreError:
            # The session can't be trusted anymore; its slot opens a fresh
            # one for the next request.
            logger.exception("Restarting database session due to error")
            sessions.discard(session)
            return OperationResult(status=500, error_message="Internal server error.")
        except BaseException:
            sessions.release(session)
            raise
        sessions.release(session)
        return result

    async def respond(unit_of_work: UnitOfWork) -> Response:
        result = await run_in_threadpool(run_unit_of_work, unit_of_work)
        if result.success:
            # Redirect after submitting a form.
            return RedirectResponse(url=f"{prefix}/", status_code=303)
        return PlainTextResponse(result.error_message or "", status_code=result.status)

    @router.get("/", response_model=OverviewResponse)
    def index(user: User = Depends(get_user)):
        result = run_unit_of_work(
            lambda tx: build_overview(
                user,
                tx.teams,
                tx.votes,
                tx.phases,
                coins_to_spend=config.coins_to_spend,
                email_suffix=config.email_suffix,
            )
        )
        if not isinstance(result, OverviewResult):
            return PlainTextResponse(result.error_message or "", status_code=result.status)
        return to_overview_response(result)

    @router.post("/create-team")
    async def create_team_endpoint(request: Request, user: User = Depends(get_user)):
        # The body can be consumed only once, so read it before the unit of
        # work, which may be retried.
        form = await request.form()
        name = str(form.get("name", ""))
        description = str(form.get("description", ""))
        return await respond(
            lambda tx: create_team(
                user,
                name,
                description,
                tx.teams,
                tx.phases,
                max_teams_per_creator=config.max_teams_per_creator,
            )
        )

    @router.post("/join-team")
    async def join_team_endpoint(request: Request, user: User = Depends(get_user)):
        team_id = _parse_team_id(await request.form())
        if team_id is None:
            return PlainTextResponse("Invalid team.", status_code=400)
        return await respond(lambda tx: join_team(user, team_id, tx.teams, tx.phases))

    @router.post("/leave-team")
    async def leave_team_endpoint(request: Request, user: User = Depends(get_user)):
        team_id = _parse_team_id(await request.form())
        if team_id is None:
            return PlainTextResponse("Invalid team.", status_code=400)
        return await respond(lambda tx: leave_team(user, team_id, tx.teams, tx.phases))

    @router.post("/delete-team")
    async def delete_team_endpoint(request: Request, user: User = Depends(get_user)):
        team_id = _parse_team_id(await request.form())
        if team_id is None:
            return PlainTextResponse("Invalid team.", status_code=400)
        return await respond(
            lambda tx: delete_team(user, team_id, tx.teams, tx.votes, tx.phases)
        )

    @router.post("/vote")
    async def vote_endpoint(request: Request, user: User = Depends(get_user)):
        form = await request.form()
        points, error = parse_ballot({k: str(v) for k, v in form.items()})
        if error:
            return PlainTextResponse(error, status_code=400)
        return await respond(
            lambda tx: submit_vote(
                user,
                points,
                tx.teams,
                tx.votes,
                tx.phases,
                coins_to_spend=config.coins_to_spend,
                policy=config.anti_cheat_policy,
            )
        )

    @router.post("/next")
    async def next_phase_endpoint(user: User = Depends(get_user)):
        return await respond(lambda tx: advance_phase(user, tx.phases))

    @router.post("/prev")
    async def prev_phase_endpoint(user: User = Depends(get_user)):
        return await respond(lambda tx: retreat_phase(user, tx.phases))

    app.include_router(router)
    return app
