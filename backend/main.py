from fastapi import APIRouter, Depends, FastAPI, Header, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from pydantic import BaseModel, Field
from typing import Annotated, List, Optional
import sys
import time
import logging

from config import Settings
from errors import SimilarityUnavailable
from llm_client import (
    COPILOT_MODULE_INFO, COPILOT_SDK_AVAILABLE,
    CopilotCLIClient, LanguageModel,
)
from logger import (
    setup_logging, get_logger,
    summarize_token_usage, set_request_id,
)
from models import TOTAL_QUESTIONS, GameConfig, Language, TriviaQuestion
from question_pipeline import QualityGate, QuestionGenerator, QuestionPipeline
from similarity import (
    QuestionIndex, SentenceTransformerEmbedder,
    SimilarityChecker, SimilarityResult,
)

logger = get_logger("TriviaWars")

MAX_TOPIC_LENGTH = 200
MAX_PREVIOUS_QUESTIONS = TOTAL_QUESTIONS * 2
MAX_QUESTION_LENGTH = 500

QuestionText = Annotated[str, Field(max_length=MAX_QUESTION_LENGTH)]


# --- Request/Response Models ---

class GenerateQuestionRequest(BaseModel):
    topic: str
    # The whole history goes into one CLI argument, so it is bounded here
    previousQuestions: List[QuestionText] = Field(default_factory=list, max_length=MAX_PREVIOUS_QUESTIONS)
    language: Language = "en"


class CheckSimilarityRequest(BaseModel):
    question: QuestionText


class ErrorResponse(BaseModel):
    error: str


# --- Dependencies ---

def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_pipeline(request: Request) -> QuestionPipeline:
    return request.app.state.pipeline


def get_similarity(request: Request) -> Optional[SimilarityChecker]:
    return request.app.state.similarity


def require_auth(
    x_auth_token: str = Header(default=""),
    settings: Settings = Depends(get_settings),
) -> None:
    """Check the shared secret for AI endpoints"""
    if not settings.verify_auth_token(x_auth_token):
        raise HTTPException(status_code=401, detail="Unauthorized - invalid auth token")


router = APIRouter()


@router.get("/health")
async def health():
    """Health check endpoint"""
    return {"status": "ok"}


@router.get("/api/game-config", response_model=GameConfig)
async def game_config():
    """Session constants for the client (question count, winning score, hints)"""
    return GameConfig()


@router.post(
    "/api/generate-question",
    response_model=TriviaQuestion,
    responses={500: {"model": ErrorResponse}},
    dependencies=[Depends(require_auth)],
)
async def generate_question(
    request: GenerateQuestionRequest,
    pipeline: QuestionPipeline = Depends(get_pipeline),
    similarity: Optional[SimilarityChecker] = Depends(get_similarity),
):
    """Generate one trivia question for a topic"""
    topic = request.topic.strip()
    if not topic:
        raise HTTPException(status_code=400, detail="Topic cannot be empty")
    if len(topic) > MAX_TOPIC_LENGTH:
        raise HTTPException(status_code=400, detail=f"Topic too long (max {MAX_TOPIC_LENGTH} characters)")

    logger.info(
        f"🎯 Generate request: topic='{topic}', language={request.language}, "
        f"previous={len(request.previousQuestions)}"
    )
    start_time = time.time()

    try:
        question = await pipeline.next_question(topic, request.previousQuestions, request.language)
    except Exception as e:
        logger.error(f"❌ Generation failed: {e}")
        return JSONResponse(status_code=500, content={"error": "Failed to generate question"})

    elapsed_ms = int((time.time() - start_time) * 1000)
    logger.info(f"✅ Generated question in {elapsed_ms}ms")

    if similarity is not None:
        try:
            await similarity.remember(question.question)
        except Exception as e:
            logger.warning(f"⚠️  Could not index generated question: {e}")

    return question


@router.post(
    "/api/check-similarity",
    response_model=SimilarityResult,
    responses={500: {"model": ErrorResponse}, 503: {"model": ErrorResponse}},
    dependencies=[Depends(require_auth)],
)
async def check_similarity(
    request: CheckSimilarityRequest,
    similarity: Optional[SimilarityChecker] = Depends(get_similarity),
):
    """Check a question against previously generated ones"""
    if similarity is None:
        raise SimilarityUnavailable("Similarity checking is not enabled")
    try:
        return await similarity.check(request.question)
    except Exception as e:
        logger.error(f"❌ Similarity check failed: {e}")
        return JSONResponse(status_code=500, content={"error": "Failed to check similarity"})


@router.get("/api/ai-status")
async def get_ai_status(request: Request, settings: Settings = Depends(get_settings)):
    """Provider diagnostics - useful for debugging"""
    llm = request.app.state.llm
    cli_path = llm.resolve_cli() if isinstance(llm, CopilotCLIClient) else None
    status = {
        "provider": type(llm).__name__,
        "sdk_available": COPILOT_SDK_AVAILABLE,
        "sdk_info": COPILOT_MODULE_INFO,
        "cli_found": bool(cli_path),
        "cli_path": cli_path,
        "model": getattr(llm, "model", None),
        "quality_gate": request.app.state.pipeline.gate is not None,
        "similarity": request.app.state.similarity is not None,
        "auth_secret_set": bool(settings.auth_secret),
        "python_version": sys.version,
    }
    logger.info(f"📊 AI Status check: {status}")
    return status


@router.get("/api/token-usage")
async def get_token_usage(hours: float = 24):
    """Return aggregated model-call usage stats from the JSONL log."""
    return summarize_token_usage(since_hours=hours)


# --- Error handling ---

async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)})


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    problems = "; ".join(
        f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()
    )
    return JSONResponse(status_code=422, content={"error": f"Invalid request: {problems}"})


async def similarity_unavailable_handler(request: Request, exc: SimilarityUnavailable):
    return JSONResponse(status_code=503, content={"error": str(exc)})


def build_pipeline(settings: Settings, llm: LanguageModel) -> QuestionPipeline:
    gate = QualityGate(llm) if settings.quality_gate else None
    return QuestionPipeline(QuestionGenerator(llm), gate)


def build_similarity(settings: Settings) -> Optional[SimilarityChecker]:
    if not settings.similarity:
        return None
    return SimilarityChecker(
        SentenceTransformerEmbedder(settings.embedding_model),
        QuestionIndex(max_size=settings.similarity_max_questions),
        threshold=settings.similarity_threshold,
        count=settings.similarity_count,
    )


def create_app(
    settings: Optional[Settings] = None,
    *,
    llm: Optional[LanguageModel] = None,
    similarity: Optional[SimilarityChecker] = None,
) -> FastAPI:
    """Build the API with its collaborators.

    The language-model client and the similarity checker default to the
    ones described by ``settings``; tests pass stubs instead.
    """
    settings = settings or Settings()
    setup_logging(settings.log_dir, console_level=logging.INFO)

    if llm is None:
        llm = CopilotCLIClient(
            model=settings.model,
            cli_path=settings.cli_path,
            timeout=settings.llm_timeout_seconds,
        )
    if similarity is None:
        similarity = build_similarity(settings)
    if not settings.auth_secret:
        logger.warning("⚠️  QUIZ_AUTH_SECRET not set - AI endpoints unprotected!")

    app = FastAPI(title="Trivia Wars API")

    # CORS - allow all origins for simplicity (adjust for production)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,  # Must be False when using allow_origins=["*"]
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["*"],
    )

    @app.middleware("http")
    async def request_id_middleware(request: Request, call_next):
        rid = set_request_id(request.headers.get("X-Request-ID"))
        response = await call_next(request)
        response.headers["X-Request-ID"] = rid
        return response

    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(SimilarityUnavailable, similarity_unavailable_handler)

    app.state.settings = settings
    app.state.llm = llm
    app.state.pipeline = build_pipeline(settings, llm)
    app.state.similarity = similarity

    app.include_router(router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    settings = app.state.settings
    print(f"\n🔮 Trivia Wars Server")
    print(f"   Quality gate: {'✅ On' if settings.quality_gate else '❌ Off'}")
    print(f"   Similarity: {'✅ On' if settings.similarity else '❌ Off'}")
    print(f"   URL: http://localhost:{settings.port}\n")
    uvicorn.run(app, host=settings.host, port=settings.port)
