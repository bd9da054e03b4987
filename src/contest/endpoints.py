import asyncio
from contextlib import asynccontextmanager
from typing import List

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from contest.auth_middleware import (
    JwtAuthMiddleware,
    require_admin,
    require_user,
)
from contest.errors import (
    BadRequestError,
    ContestError,
    NotFoundError,
    UnauthorizedError,
)
from contest.gate import get_config, update_windows
from contest.service import ContestService
from core import __version__ as VERSION  # noqa: N812
from core.db.models import SnowflakeId
from core.log import get_logger

from .models import (
    ConfigResponse,
    ConfigUpdateRequest,
    ScoreResponse,
    SubmissionRequest,
    SubmissionResponse,
    User,
    VoteAssignmentResponse,
    VoteRequest,
    VoteResponse,
)

logger = get_logger(__name__)

router = APIRouter()


def get_service(request: Request) -> ContestService:
    return request.app.state.contest_service


def _status_for(exc: ContestError) -> int:
    if isinstance(exc, NotFoundError):
        return status.HTTP_404_NOT_FOUND
    if isinstance(exc, UnauthorizedError):
        return status.HTTP_401_UNAUTHORIZED
    if isinstance(exc, BadRequestError):
        return status.HTTP_400_BAD_REQUEST
    return status.HTTP_500_INTERNAL_SERVER_ERROR


async def contest_error_handler(request: Request, exc: ContestError) -> JSONResponse:
    code = _status_for(exc)
    if code == status.HTTP_500_INTERNAL_SERVER_ERROR:
        logger.error("Unhandled contest error on %s: %s", request.url.path, exc)
    return JSONResponse(status_code=code, content={"detail": str(exc)})


# ============================================================================
# Service Endpoints
# ============================================================================


@router.get("/")
async def root() -> dict:
    """Root endpoint."""
    return {
        "service": "Design Contest",
        "version": VERSION,
        "docs": "/docs",
        "health": "/health",
    }


@router.get("/health")
async def health_check(service: ContestService = Depends(get_service)) -> dict:
    """Health check endpoint."""
    return {
        "status": "healthy",
        "service": "design-contest",
        "database_connected": service.engine is not None,
        "scheduler_running": service._phase_tick_task is not None,
    }


# ============================================================================
# Configuration
# ============================================================================


@router.get("/api/config", response_model=ConfigResponse)
async def get_competition_config(
    service: ContestService = Depends(get_service),
) -> ConfigResponse:
    """Current competition windows and flags."""
    async with service.async_session() as session:
        config = await get_config(session)
    if config is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Competition configuration not found",
        )
    return ConfigResponse.model_validate(config)


@router.put("/api/config", response_model=ConfigResponse)
async def update_competition_config(
    payload: ConfigUpdateRequest,
    admin: User = Depends(require_admin),
    service: ContestService = Depends(get_service),
) -> ConfigResponse:
    """Replace the four competition windows (admin only)."""
    async with service.async_session() as session:
        config = await update_windows(session, payload)
        await session.commit()
        await session.refresh(config)
    logger.info("Competition windows updated by %s", admin.email)
    return ConfigResponse.model_validate(config)


# ============================================================================
# Submissions
# ============================================================================


@router.post("/api/submissions", response_model=SubmissionResponse)
async def create_submission(
    payload: SubmissionRequest,
    user: User = Depends(require_user),
    service: ContestService = Depends(get_service),
) -> SubmissionResponse:
    async with service.async_session() as session:
        submission = await service.gate.create_submission(session, user, payload)
        await session.commit()
        await session.refresh(submission)
    return SubmissionResponse.model_validate(submission)


@router.get("/api/submissions/mine", response_model=SubmissionResponse)
async def get_my_submission(
    user: User = Depends(require_user),
    service: ContestService = Depends(get_service),
) -> SubmissionResponse:
    async with service.async_session() as session:
        submission = await service.gate.find_submission_by_user(session, user.id)
    if submission is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No submission found",
        )
    return SubmissionResponse.model_validate(submission)


@router.get("/api/submissions/{submission_id}", response_model=SubmissionResponse)
async def get_submission(
    submission_id: SnowflakeId,
    user: User = Depends(require_user),
    service: ContestService = Depends(get_service),
) -> SubmissionResponse:
    """Visible to the owner, admins and reviewers assigned to it."""
    async with service.async_session() as session:
        submission = await service.gate.view_submission(session, user, submission_id)
    return SubmissionResponse.model_validate(submission)


@router.api_route(
    "/api/submissions/{submission_id}",
    methods=["PUT", "PATCH"],
    response_model=SubmissionResponse,
)
async def update_submission(
    submission_id: SnowflakeId,
    payload: SubmissionRequest,
    user: User = Depends(require_user),
    service: ContestService = Depends(get_service),
) -> SubmissionResponse:
    async with service.async_session() as session:
        submission = await service.gate.update_submission(
            session, user, submission_id, payload
        )
        await session.commit()
        await session.refresh(submission)
    return SubmissionResponse.model_validate(submission)


# ============================================================================
# Votes
# ============================================================================


@router.get("/api/vote_assignments/mine", response_model=List[VoteAssignmentResponse])
async def get_my_vote_assignments(
    user: User = Depends(require_user),
    service: ContestService = Depends(get_service),
) -> List[VoteAssignmentResponse]:
    async with service.async_session() as session:
        assignments = await service.gate.list_assignments(session, user)
    return [VoteAssignmentResponse.model_validate(a) for a in assignments]


@router.post("/api/votes", response_model=VoteResponse)
async def create_vote(
    payload: VoteRequest,
    user: User = Depends(require_user),
    service: ContestService = Depends(get_service),
) -> VoteResponse:
    async with service.async_session() as session:
        vote = await service.gate.create_vote(session, user, payload)
        await session.commit()
        await session.refresh(vote)
    return VoteResponse.model_validate(vote)


@router.put("/api/votes/{vote_id}", response_model=VoteResponse)
async def update_vote(
    vote_id: SnowflakeId,
    payload: VoteRequest,
    user: User = Depends(require_user),
    service: ContestService = Depends(get_service),
) -> VoteResponse:
    async with service.async_session() as session:
        vote = await service.gate.update_vote(session, user, vote_id, payload)
        await session.commit()
        await session.refresh(vote)
    return VoteResponse.model_validate(vote)


@router.get("/api/votes/mine", response_model=List[VoteResponse])
async def get_my_votes(
    user: User = Depends(require_user),
    service: ContestService = Depends(get_service),
) -> List[VoteResponse]:
    async with service.async_session() as session:
        votes = await service.gate.list_votes(session, user)
    return [VoteResponse.model_validate(v) for v in votes]


# ============================================================================
# Leaderboard
# ============================================================================


@router.get("/api/scores", response_model=List[ScoreResponse])
async def get_scores(
    service: ContestService = Depends(get_service),
) -> List[ScoreResponse]:
    """Leaderboard, best first. Hidden until an operator publishes it."""
    async with service.async_session() as session:
        config = await get_config(session)
    if config is None or not config.show_leaderboard:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Leaderboard is not available",
        )
    scores = await service.leaderboard()
    return [ScoreResponse.model_validate(s) for s in scores]


def create_app(
    contest_service: ContestService, manage_lifecycle: bool = True
) -> FastAPI:
    """Build the API around ``contest_service``.

    With ``manage_lifecycle`` the app starts the service and its background
    tasks on startup and shuts it down on exit; tests start the service
    themselves and pass ``False``.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Manage contest service lifecycle."""
        if not manage_lifecycle:
            yield
            return

        # Initialize the service but don't start background tasks yet
        await contest_service.startup()

        # Start background tasks after FastAPI is ready
        background = asyncio.create_task(contest_service.start_background_tasks())

        yield

        background.cancel()
        await contest_service.shutdown()

    app = FastAPI(
        title="Design Contest API",
        description="Submissions, peer review and leaderboard for the design contest",
        version=VERSION,
        lifespan=lifespan,
    )
    app.state.contest_service = contest_service

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(JwtAuthMiddleware, contest_service=contest_service)

    app.add_exception_handler(ContestError, contest_error_handler)
    app.include_router(router)
    return app
