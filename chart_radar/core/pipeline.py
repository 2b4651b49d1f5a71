"""
Quota-gated analysis pipeline.

Sequences capture validation, quota reservation, the provider call, parsing
and persistence, and maps each stage's failure onto a PipelineFailure.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple

from .capture import CaptureArtifact, CaptureValidator, InsufficientContent
from .errors import ChartRadarError, FailureReason, ProviderError
from .pairs import format_trading_pair
from .parser import AUTO_DETECT, ParseContext, ResponseParser
from .quota import QuotaExceeded, QuotaManager, UsageState
from .tiers import AnalysisKind
from chart_radar.sdk.gateway import AnalysisOptions, ProviderGateway, ProviderResponse, SymbolQuery
from chart_radar.storage.models import AnalysisResult, StoredAnalysis
from chart_radar.storage.repository import AnalysisRepository
from chart_radar.utils.logger import get_logger

logger = get_logger("core.pipeline")


class PipelineStage(Enum):
    """Stages a pipeline run moves through."""
    IDLE = "idle"
    VALIDATING = "validating"
    QUOTA_CHECKING = "quota_checking"
    INVOKING = "invoking"
    PARSING = "parsing"
    PERSISTING = "persisting"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True)
class AnalysisRequest:
    """One analysis request.

    Exactly one of ``capture`` and ``symbol`` drives the run: a capture is
    analyzed as a chart, a symbol alone as a pair query.
    """
    subject_id: str
    capture: Optional[CaptureArtifact] = None
    symbol: str = AUTO_DETECT
    timeframe: str = AUTO_DETECT
    kind: AnalysisKind = AnalysisKind.BASIC
    expected_size: Optional[Tuple[int, int]] = None
    detailed: bool = False

    def __post_init__(self):
        """Validate request shape."""
        if not self.subject_id or not self.subject_id.strip():
            raise ValueError("subject_id is required")
        if self.capture is None and (not self.symbol or self.symbol == AUTO_DETECT):
            raise ValueError("a capture or a symbol is required")

    @property
    def is_symbol_only(self) -> bool:
        return self.capture is None


@dataclass(frozen=True)
class PipelineWarning:
    """Non-fatal problem reported alongside a result."""
    reason: FailureReason
    message: str


@dataclass(frozen=True)
class PipelineOutcome:
    """Successful run: the result, the post-reservation usage and the trail."""
    result: AnalysisResult
    usage: UsageState
    stages: Tuple[PipelineStage, ...]
    warnings: Tuple[PipelineWarning, ...] = ()
    record: Optional[StoredAnalysis] = None
    provider_response: Optional[ProviderResponse] = None


class PipelineFailure(ChartRadarError):
    """A run that ended in the FAILED stage.

    Attributes:
        stage: Stage that failed
        reason: FailureReason of the cause
        cause: Original exception
        usage: Usage state after reservation, when quota was already taken
        stages: Stages visited, ending with FAILED
    """

    def __init__(
        self,
        stage: PipelineStage,
        cause: ChartRadarError,
        usage: Optional[UsageState] = None,
        stages: Tuple[PipelineStage, ...] = ()
    ):
        self.stage = stage
        self.cause = cause
        self.usage = usage
        self.stages = stages
        super().__init__(f"{stage.value} failed: {cause}", reason=cause.reason)


class PipelineOrchestrator:
    """Runs the stages in order; holds no state between runs."""

    def __init__(
        self,
        quota_manager: QuotaManager,
        gateway: ProviderGateway,
        parser: Optional[ResponseParser] = None,
        validator: Optional[CaptureValidator] = None,
        persistence: Optional[AnalysisRepository] = None
    ):
        self.quota_manager = quota_manager
        self.gateway = gateway
        self.parser = parser or ResponseParser()
        self.validator = validator or CaptureValidator()
        self.persistence = persistence

    def run(self, request: AnalysisRequest) -> PipelineOutcome:
        """Execute one analysis.

        Args:
            request: What to analyze and for whom

        Returns:
            PipelineOutcome with the parsed result

        Raises:
            PipelineFailure: If validation, quota or the provider call fails
        """
        stages: List[PipelineStage] = [PipelineStage.IDLE]
        warnings: List[PipelineWarning] = []
        log = logger.bind(subject_id=request.subject_id, kind=request.kind.value)

        if not request.is_symbol_only:
            stages.append(PipelineStage.VALIDATING)
            try:
                self.validator.validate_or_raise(request.capture, request.expected_size)
            except InsufficientContent as e:
                raise self._fail(stages, PipelineStage.VALIDATING, e, log)

        stages.append(PipelineStage.QUOTA_CHECKING)
        try:
            usage = self.quota_manager.reserve(request.subject_id, request.kind)
        except QuotaExceeded as e:
            raise self._fail(stages, PipelineStage.QUOTA_CHECKING, e, log)

        stages.append(PipelineStage.INVOKING)
        if request.is_symbol_only:
            analysis_input = SymbolQuery(
                symbol=format_trading_pair(request.symbol),
                timeframe=request.timeframe if request.timeframe != AUTO_DETECT else "1D",
            )
        else:
            analysis_input = request.capture
        options = AnalysisOptions(
            pair_name=request.symbol,
            timeframe=request.timeframe,
            detailed=request.detailed,
        )
        try:
            response = self.gateway.analyze(analysis_input, options)
        except ProviderError as e:
            raise self._fail(stages, PipelineStage.INVOKING, e, log, usage)

        stages.append(PipelineStage.PARSING)
        context = ParseContext(
            symbol=analysis_input.symbol if isinstance(analysis_input, SymbolQuery) else request.symbol,
            timeframe=analysis_input.timeframe if isinstance(analysis_input, SymbolQuery) else request.timeframe,
        )
        result = self.parser.parse(response.text, context)

        record = None
        if self.persistence is not None:
            stages.append(PipelineStage.PERSISTING)
            try:
                record = self.persistence.save_analysis(request.subject_id, result)
            except Exception as e:
                log.warning("analysis_persist_failed", error=str(e), exc_info=True)
                warnings.append(PipelineWarning(
                    reason=FailureReason.PERSISTENCE_ERROR,
                    message=f"Analysis could not be saved: {e}",
                ))

        stages.append(PipelineStage.DONE)
        log.info(
            "pipeline_completed",
            pair=result.pair_name,
            sentiment=result.overall_sentiment.value,
            warnings=len(warnings),
        )
        return PipelineOutcome(
            result=result,
            usage=usage,
            stages=tuple(stages),
            warnings=tuple(warnings),
            record=record,
            provider_response=response,
        )

    @staticmethod
    def _fail(
        stages: List[PipelineStage],
        stage: PipelineStage,
        cause: ChartRadarError,
        log,
        usage: Optional[UsageState] = None
    ) -> PipelineFailure:
        stages.append(PipelineStage.FAILED)
        log.info("pipeline_failed", stage=stage.value, reason=cause.reason.value)
        return PipelineFailure(stage, cause, usage, tuple(stages))
