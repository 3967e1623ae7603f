import logging
import secrets
from uuid import UUID

from cachetools import TTLCache
from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from slowapi import Limiter
from slowapi.util import get_remote_address
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from config import get_settings
from database import get_db
from models.assessment import Assessment
from models.assessment_result import AssessmentResult
from models.trial import TrialRecord
from schemas.assessment import (
    AssessmentCreate,
    AssessmentData,
    AssessmentResponse,
    AssessmentState,
    TieredReport,
)
from schemas.trial import Trial, TrialResponseCreate
from services.assessment_engine import AssessmentEngine
from services.engine_config import EngineConfig
from services.errors import RejectedOperationError
from services.report_tiers import build_report
from services.stimulus_deck import KEY_CARDS

router = APIRouter(prefix="/api/assessments", tags=["assessments"])
settings = get_settings()
logger = logging.getLogger(__name__)

# Rate limiter: keyed by client IP
limiter = Limiter(key_func=get_remote_address)

# ── Live engines: assessment id → AssessmentEngine ──
# A miss (eviction, restart, another worker) is rebuilt from the trial log.
_live_engines: TTLCache = TTLCache(
    maxsize=settings.session_cache_maxsize, ttl=settings.session_cache_ttl_seconds
)


def _get_assessment(db: Session, assessment_id: UUID) -> Assessment:
    assessment = db.query(Assessment).filter(Assessment.id == assessment_id).first()
    if not assessment:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Assessment not found"
        )
    return assessment


def _in_sync(engine: AssessmentEngine, assessment: Assessment) -> bool:
    """The cached engine holds exactly the persisted responses, in order."""
    cached = [(t.trial_number, t.user_choice) for t in engine.trials]
    stored = [(t.trial_number, t.user_choice) for t in assessment.trials]
    return cached == stored


def _load_engine(assessment: Assessment) -> AssessmentEngine:
    """Cached engine for the assessment, replayed from persisted trials when stale or missing."""
    engine = _live_engines.get(assessment.id)
    if engine is None or not _in_sync(engine, assessment):
        if engine is not None:
            logger.warning("Engine for %s out of sync with trial log, replaying", assessment.id)
        engine = AssessmentEngine.replay(
            ((t.user_choice, t.response_time, t.timestamp) for t in assessment.trials),
            config=EngineConfig.from_dict(assessment.engine_config),
            seed=assessment.seed,
        )
        _live_engines[assessment.id] = engine
    return engine


def _build_state(assessment: Assessment, engine: AssessmentEngine) -> AssessmentState:
    position = None if engine.is_complete else engine.position
    return AssessmentState(
        id=assessment.id,
        status=assessment.status,
        next_trial_number=engine.next_trial_number,
        total_trials=engine.config.total_trials,
        rule_block_number=position.rule_block_number if position else None,
        trial_in_block=position.trial_in_block if position else None,
        stimulus=engine.current_stimulus,
        key_cards=list(KEY_CARDS),
        intervention_level=engine.intervention_level,
        trials_completed=len(engine.trials),
    )


def _trial_record(assessment_id: UUID, trial: Trial) -> TrialRecord:
    return TrialRecord(
        assessment_id=assessment_id,
        trial_number=trial.trial_number,
        user_choice=trial.user_choice,
        response_time=trial.response_time,
        timestamp=trial.timestamp,
        rule=trial.rule,
        stimulus=trial.stimulus.model_dump(),
        correct=trial.correct,
        trial_type=trial.trial_type,
        rule_switch=trial.rule_switch,
        perseverative=trial.perseverative,
        consecutive_errors=trial.consecutive_errors,
        trial_in_block=trial.trial_in_block,
        rule_block_number=trial.rule_block_number,
        adaptation_latency=trial.adaptation_latency,
        initial_rule_discovery_latency=trial.initial_rule_discovery_latency,
    )


@router.post("/start", response_model=AssessmentState, status_code=status.HTTP_201_CREATED)
@limiter.limit(settings.start_rate_limit)
async def start_assessment(
    request: Request,
    data: AssessmentCreate,
    db: Session = Depends(get_db)
):
    """Start a new sorting session and return the first stimulus."""
    config = EngineConfig.from_settings(settings)
    seed = data.seed if data.seed is not None else secrets.randbelow(1_000_000)

    assessment = Assessment(
        subject_id=data.subject_id,
        seed=seed,
        engine_config=config.to_dict(),
        status="in_progress",
    )
    db.add(assessment)
    db.commit()
    db.refresh(assessment)

    engine = AssessmentEngine(config=config, seed=seed)
    _live_engines[assessment.id] = engine
    logger.info("Started assessment %s (subject=%s)", assessment.id, data.subject_id)

    return _build_state(assessment, engine)


@router.get("/{assessment_id}", response_model=AssessmentResponse)
async def get_assessment(assessment_id: UUID, db: Session = Depends(get_db)):
    return _get_assessment(db, assessment_id)


@router.get("/{assessment_id}/state", response_model=AssessmentState)
async def get_assessment_state(assessment_id: UUID, db: Session = Depends(get_db)):
    """Current block position, stimulus and intervention level."""
    assessment = _get_assessment(db, assessment_id)
    return _build_state(assessment, _load_engine(assessment))


@router.post("/{assessment_id}/responses", response_model=Trial)
async def submit_response(
    assessment_id: UUID,
    response: TrialResponseCreate,
    db: Session = Depends(get_db)
):
    """Classify one subject response. The final response also produces the scorecard."""
    assessment = _get_assessment(db, assessment_id)
    if assessment.status != "in_progress":
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Assessment is not active"
        )

    engine = _load_engine(assessment)
    try:
        trial = engine.submit_response(
            response.choice, response.response_time, trial_number=response.trial_number
        )
    except RejectedOperationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    try:
        db.add(_trial_record(assessment.id, trial))
        if engine.is_complete:
            result = engine.get_result()
            assessment.status = "completed"
            assessment.completed_at = result.completed_at
            db.add(AssessmentResult.from_assessment_data(assessment.id, result))
        db.commit()
    except SQLAlchemyError as e:
        # The engine advanced past a trial that was never stored
        db.rollback()
        _live_engines.pop(assessment_id, None)
        if isinstance(e, IntegrityError):
            logger.warning("Trial %d of %s already recorded", trial.trial_number, assessment_id)
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail=f"Trial {trial.trial_number} was already recorded; reload the session state"
            )
        logger.exception("Failed to record trial %d of %s", trial.trial_number, assessment_id)
        raise

    if engine.is_complete:
        logger.info(
            "Assessment %s completed: score=%d shifts=%d perseverative=%d",
            assessment.id, result.cognitive_flexibility_score,
            result.shifts_achieved, result.perseverative_errors,
        )
    return trial


def _stored_result(assessment: Assessment) -> AssessmentData:
    if assessment.status != "completed" or assessment.result is None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Assessment is not complete"
        )
    return AssessmentData.model_validate(assessment.result.data)


@router.get("/{assessment_id}/result", response_model=AssessmentData)
async def get_result(assessment_id: UUID, db: Session = Depends(get_db)):
    """The stored scorecard, exactly as produced at completion."""
    return _stored_result(_get_assessment(db, assessment_id))


@router.get("/{assessment_id}/report", response_model=TieredReport)
async def get_report(
    assessment_id: UUID,
    tier: str = Query("basic", description="basic, standard or premium"),
    db: Session = Depends(get_db)
):
    """Scorecard projected onto the sections a report tier unlocks."""
    assessment = _get_assessment(db, assessment_id)
    data = _stored_result(assessment)
    max_shifts = EngineConfig.from_dict(assessment.engine_config).max_shifts
    try:
        return build_report(assessment.id, data, tier, max_shifts=max_shifts)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


@router.post("/{assessment_id}/abandon", response_model=AssessmentResponse)
async def abandon_assessment(assessment_id: UUID, db: Session = Depends(get_db)):
    """Stop a session. Its partial trial log is kept but never scored."""
    assessment = _get_assessment(db, assessment_id)
    if assessment.status != "in_progress":
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Assessment is not active"
        )
    assessment.status = "abandoned"
    db.commit()
    db.refresh(assessment)
    _live_engines.pop(assessment.id, None)
    logger.info("Assessment %s abandoned after %d trials", assessment.id, len(assessment.trials))
    return assessment
