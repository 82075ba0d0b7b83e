"""
Chess Insights Backend API
"""
import logging
from contextlib import asynccontextmanager
from functools import lru_cache
from typing import List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from chess_insights import config
from chess_insights.analysis_service import AnalysisService
from chess_insights.cloud_eval import CloudEvalClient, format_score
from chess_insights.database import GameStore, UserStore, to_iso
from chess_insights.errors import AccountNotFoundError, ChessInsightsError
from chess_insights.game_data import GAME_SOURCES, UserConfig, game_to_dict
from chess_insights.local_engine import LocalEvaluator
from chess_insights.replay_helper import build_positions
from chess_insights.sync_service import SyncService

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    # Stop the engine process if one was started
    if get_analysis_service.cache_info().currsize:
        get_analysis_service().close()


app = FastAPI(title="Chess Insights API", lifespan=lifespan)

# Enable CORS for frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173", "http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============================================
# Pydantic models for request/response
# ============================================

class CreateUserRequest(BaseModel):
    chessComUsername: Optional[str] = None
    lichessUsername: Optional[str] = None


class UserResponse(BaseModel):
    id: int
    chessComUsername: Optional[str] = None
    lichessUsername: Optional[str] = None
    lastSyncedAt: Optional[str] = None


class AnalysisRequest(BaseModel):
    pgn: Optional[str] = None
    moves: Optional[List[str]] = None
    quick: bool = False
    depth: Optional[int] = None
    useCloud: bool = True


def user_to_response(user: UserConfig) -> UserResponse:
    return UserResponse(
        id=user.id,
        chessComUsername=user.chess_com_username,
        lichessUsername=user.lichess_username,
        lastSyncedAt=to_iso(user.last_synced_at),
    )


# ============================================
# Services (one set per process)
# ============================================

@lru_cache()
def get_game_store() -> GameStore:
    return GameStore(config.DATABASE_PATH)


@lru_cache()
def get_user_store() -> UserStore:
    return UserStore(config.DATABASE_PATH)


@lru_cache()
def get_sync_service() -> SyncService:
    return SyncService(get_game_store(), get_user_store())


@lru_cache()
def get_analysis_service() -> AnalysisService:
    return AnalysisService(LocalEvaluator(), CloudEvalClient())


@app.exception_handler(ChessInsightsError)
async def chess_insights_error_handler(request, exc: ChessInsightsError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


# ============================================
# User endpoints
# ============================================

@app.post("/api/users", response_model=UserResponse)
def create_user(
    request: CreateUserRequest,
    user_store: UserStore = Depends(get_user_store),
    sync_service: SyncService = Depends(get_sync_service),
):
    """Create a local user after checking the platform usernames exist."""
    if not request.chessComUsername and not request.lichessUsername:
        raise HTTPException(status_code=400, detail="At least one platform username is required")

    validation = sync_service.validate_usernames(request.chessComUsername, request.lichessUsername)
    invalid = [source for source, valid in validation.items() if not valid]
    if invalid:
        raise HTTPException(status_code=400, detail=f"Username not found on: {', '.join(invalid)}")

    user = user_store.create_user(request.chessComUsername, request.lichessUsername)
    return user_to_response(user)


@app.get("/api/users/{user_id}", response_model=UserResponse)
def get_user(user_id: int, user_store: UserStore = Depends(get_user_store)):
    user = user_store.find_by_id(user_id)
    if user is None:
        raise AccountNotFoundError(user_id)
    return user_to_response(user)


# ============================================
# Sync endpoints
# ============================================

@app.post("/api/sync/{user_id}")
def sync_games(
    user_id: int,
    full: bool = Query(False, description="Fetch the full history"),
    sync_service: SyncService = Depends(get_sync_service),
):
    """Sync new games for a user from every configured platform."""
    return sync_service.sync_games(user_id, full_sync=full).to_dict()


@app.post("/api/sync/{user_id}/full-resync")
def full_resync(user_id: int, sync_service: SyncService = Depends(get_sync_service)):
    """Delete a user's stored games and re-fetch everything."""
    return sync_service.full_resync(user_id).to_dict()


# ============================================
# Game endpoints
# ============================================

@app.get("/api/games")
def get_games(
    user_id: int = Query(..., alias="userId", description="Local user ID"),
    source: Optional[str] = Query(None, description="chesscom or lichess"),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    game_store: GameStore = Depends(get_game_store),
):
    """Get stored games for a user, newest first."""
    if source is not None and source not in GAME_SOURCES:
        raise HTTPException(status_code=400, detail=f"Unknown source: {source}")

    games = game_store.find_all(user_id, source=source, limit=limit, offset=offset)
    return {
        "games": [game_to_dict(game) for game in games],
        "total": game_store.count(user_id),
    }


@app.post("/api/games/{game_id}/analysis")
def analyze_game(
    game_id: str,
    request: AnalysisRequest,
    game_store: GameStore = Depends(get_game_store),
    analysis_service: AnalysisService = Depends(get_analysis_service),
):
    """Analyze a stored game from its PGN or move list and save the summary."""
    try:
        fens, moves = build_positions(pgn=request.pgn, moves=request.moves)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    result = analysis_service.analyze_stored_game(
        game_store,
        game_id,
        fens,
        moves,
        quick=request.quick,
        depth=request.depth,
        use_cloud=request.useCloud,
    )
    return {
        "gameId": result.game_id,
        "accuracy": result.accuracy,
        "acpl": result.acpl,
        "blunders": result.blunders,
        "mistakes": result.mistakes,
        "inaccuracies": result.inaccuracies,
        "estimated": result.estimated,
        "playerMoves": result.player_moves,
        "sampledMoves": result.sampled_moves,
        "analyzedAt": to_iso(result.analyzed_at),
        "moves": [
            {
                "ply": m.ply,
                "move": m.move,
                "cpLoss": m.cp_loss,
                "bestMove": m.best_move,
                "classification": m.classification,
                "evaluation": format_score(m.eval_after.score, m.eval_after.mate) if m.eval_after else None,
                "isPlayerMove": m.is_player_move,
            }
            for m in result.moves
        ],
    }


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "ok"}

