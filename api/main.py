"""
FastAPI Web Service for the Game Recommendation Engine

Provides RESTful endpoints for:
- Getting game recommendations for the launcher's home screen
- Recording launches and finished play sessions
- Model monitoring
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field, field_validator

from config.settings import Settings, get_settings
from models.records import SessionRecord
from services.recommendation_engine import CatalogUnavailableError, RecommendationEngine
from services.redis_store import RedisPersistentStore
from services.sql_store import (
    SqlCatalogProvider, SqlFeedbackSink, SqlPersistentStore, SqlSessionEventSource,
    build_engine, create_tables
)

logger = logging.getLogger(__name__)

# Global recommendation engine instance
recommendation_engine = None


def configure_logging(settings: Settings):
    """Configure root logging from settings."""
    handlers = [logging.StreamHandler()]
    if settings.log_file:
        handlers.append(logging.FileHandler(settings.log_file))

    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=handlers
    )


def create_recommendation_engine(settings: Settings) -> RecommendationEngine:
    """Wire the engine to the launcher database and the configured arm store."""
    db_engine = build_engine(settings.to_database_config())
    create_tables(db_engine)

    if settings.arm_store == "redis":
        store = RedisPersistentStore(
            key=settings.redis_arm_key,
            host=settings.redis_host,
            port=settings.redis_port,
            db=settings.redis_db,
            password=settings.redis_password
        )
    else:
        store = SqlPersistentStore(db_engine)

    return RecommendationEngine(
        catalog=SqlCatalogProvider(db_engine),
        session_source=SqlSessionEventSource(db_engine),
        store=store,
        feedback_sink=SqlFeedbackSink(db_engine),
        config=settings.to_bandit_config()
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create the recommendation engine on startup."""
    global recommendation_engine
    settings = get_settings()
    configure_logging(settings)
    try:
        recommendation_engine = create_recommendation_engine(settings)
        logger.info("Recommendation engine created successfully")
    except Exception as e:
        logger.error(f"Failed to create recommendation engine: {e}")
        raise
    yield


# Initialize FastAPI app
app = FastAPI(
    title="Game Recommendation Engine API",
    description="Installed-game recommendations for the launcher using contextual bandits",
    version="1.0.0",
    lifespan=lifespan
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Launcher UI runs on a local origin
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Pydantic models for request/response
class RecommendationRequest(BaseModel):
    count: Optional[int] = Field(None, ge=1, description="Number of recommendations")
    diversity_factor: float = Field(0.05, ge=0.0, le=1.0, description="Amplitude of optional score jitter")
    exploration_alpha: Optional[float] = Field(None, ge=0.0, description="Override for the exploration weight")


class GameRecommendation(BaseModel):
    game_id: str
    ucb_score: float
    expected_reward: float
    uncertainty: float
    exploration_bonus: float
    penalty_applied: bool
    has_model_data: bool
    playtime_bucket: Optional[str] = None
    recency_bucket: Optional[str] = None


class RecommendationResponse(BaseModel):
    recommendations: List[GameRecommendation]
    count: int
    response_time: float
    timestamp: datetime


class LaunchRequest(BaseModel):
    game_id: str = Field(..., description="Game launched from the recommendations")


class LaunchResponse(BaseModel):
    success: bool
    message: str
    timestamp: datetime


class SessionRewardRequest(BaseModel):
    game_id: str = Field(..., description="Game that was played")
    start_time: datetime = Field(..., description="When the session started")
    duration_seconds: float = Field(..., ge=0.0, description="Session length in seconds")
    session_id: Optional[str] = Field(None, description="Session identifier")

    @field_validator("start_time")
    @classmethod
    def to_local_time(cls, value: datetime) -> datetime:
        """Session history stores naive local times."""
        if value.tzinfo is not None:
            return value.astimezone().replace(tzinfo=None)
        return value


class SessionRewardResponse(BaseModel):
    session_id: Optional[str]
    reward: float
    timestamp: datetime


class ModelMetrics(BaseModel):
    total_recommendations: int
    games_recommended: int
    cold_start_recommendations: int
    cold_start_rate: float
    sessions_processed: int
    sessions_trained: int
    launches_recorded: int
    catalog_failures: int
    vocabulary_resizes: int
    total_arms: int
    context_dimension: int
    initialized: bool
    avg_response_time: float


# Dependency to get settings
def get_config() -> Settings:
    return get_settings()


# Dependency to get recommendation engine
def get_recommendation_engine() -> RecommendationEngine:
    global recommendation_engine
    if recommendation_engine is None:
        recommendation_engine = create_recommendation_engine(get_config())
    return recommendation_engine


def _catalog_unavailable(e: CatalogUnavailableError) -> HTTPException:
    logger.error(f"Catalog unavailable: {e}")
    return HTTPException(status_code=503, detail="Game catalog is unavailable")


@app.get("/")
async def root():
    """Health check endpoint."""
    return {
        "message": "Game Recommendation Engine API",
        "version": "1.0.0",
        "status": "healthy",
        "timestamp": datetime.now()
    }


@app.post("/recommendations", response_model=RecommendationResponse)
def get_recommendations(
    request: RecommendationRequest,
    engine: RecommendationEngine = Depends(get_recommendation_engine),
    settings: Settings = Depends(get_config)
):
    """
    Get game recommendations.

    Scores every installed game with the contextual bandit and returns the
    top games together with their score breakdown.
    """
    start_time = datetime.now()
    count = request.count or settings.default_recommendation_count

    if count > settings.max_recommendations:
        raise HTTPException(
            status_code=400,
            detail=f"count must not exceed {settings.max_recommendations}"
        )

    try:
        recommendations = engine.get_recommendations(
            count=count,
            diversity_factor=request.diversity_factor,
            exploration_alpha=request.exploration_alpha
        )
    except CatalogUnavailableError as e:
        raise _catalog_unavailable(e)
    except Exception as e:
        logger.error(f"Error generating recommendations: {e}")
        raise HTTPException(status_code=500, detail=f"Failed to generate recommendations: {str(e)}")

    return RecommendationResponse(
        recommendations=recommendations,
        count=len(recommendations),
        response_time=(datetime.now() - start_time).total_seconds(),
        timestamp=datetime.now()
    )


@app.post("/recommendations/launch", response_model=LaunchResponse)
def record_launch(
    request: LaunchRequest,
    engine: RecommendationEngine = Depends(get_recommendation_engine)
):
    """Record that a recommended game was launched."""
    success = engine.record_launch(request.game_id)
    return LaunchResponse(
        success=success,
        message=f"Launch of {request.game_id} {'recorded' if success else 'not recorded'}",
        timestamp=datetime.now()
    )


@app.post("/sessions/{session_id}/reward", response_model=SessionRewardResponse)
def reward_session(
    session_id: str,
    engine: RecommendationEngine = Depends(get_recommendation_engine)
):
    """Update the model from a finished session stored in the session history."""
    try:
        reward = engine.update_from_session(session_id)
    except CatalogUnavailableError as e:
        raise _catalog_unavailable(e)

    if reward is None:
        raise HTTPException(status_code=404, detail=f"Session {session_id} or its game was not found")

    return SessionRewardResponse(session_id=session_id, reward=reward, timestamp=datetime.now())


@app.post("/sessions/reward", response_model=SessionRewardResponse)
def reward_session_record(
    request: SessionRewardRequest,
    engine: RecommendationEngine = Depends(get_recommendation_engine)
):
    """Update the model from a finished session described in the request."""
    record = SessionRecord(
        game_id=request.game_id,
        start_time=request.start_time,
        duration_seconds=request.duration_seconds,
        session_id=request.session_id
    )

    try:
        reward = engine.update_from_session(record)
    except CatalogUnavailableError as e:
        raise _catalog_unavailable(e)

    if reward is None:
        raise HTTPException(status_code=404, detail=f"Game {request.game_id} is not installed")

    return SessionRewardResponse(session_id=request.session_id, reward=reward, timestamp=datetime.now())


@app.get("/metrics", response_model=ModelMetrics)
def get_metrics(engine: RecommendationEngine = Depends(get_recommendation_engine)):
    """
    Get performance metrics for the recommendation system.

    Returns metrics including:
    - Total recommendation requests and games recommended
    - Share of recommendations without model data
    - Sessions learned from, live and historical
    """
    return ModelMetrics(**engine.get_metrics())


@app.get("/arms/stats")
def get_arm_statistics(engine: RecommendationEngine = Depends(get_recommendation_engine)) -> Dict[str, Any]:
    """Per-game arm statistics."""
    try:
        return engine.get_arm_statistics()
    except CatalogUnavailableError as e:
        raise _catalog_unavailable(e)


@app.get("/health")
def health_check():
    """Comprehensive health check endpoint."""
    try:
        engine = get_recommendation_engine()
        metrics = engine.get_metrics()

        return {
            "status": "healthy",
            "recommendation_engine": "operational" if metrics['initialized'] else "not initialised",
            "total_recommendations": metrics['total_recommendations'],
            "total_arms": metrics['total_arms'],
            "avg_response_time": metrics['avg_response_time'],
            "timestamp": datetime.now()
        }
    except Exception as e:
        logger.error(f"Health check failed: {e}")
        return {
            "status": "unhealthy",
            "error": str(e),
            "timestamp": datetime.now()
        }


if __name__ == "__main__":
    import uvicorn
    settings = get_settings()
    uvicorn.run(app, host=settings.api_host, port=settings.api_port)
