"""
Chart capture validation.

Rejects snapshots of chart widgets that have not finished rendering. An
unrendered widget is mostly its dark background (or a loading overlay) and
has very few distinct colors; a populated candlestick chart has many colors
over a meaningful share of the frame.
"""

import io
import time
from dataclasses import dataclass
from typing import Callable, Optional, Tuple, Union

import numpy as np
from PIL import Image

from .errors import ChartRadarError, FailureReason
from chart_radar.utils.logger import get_logger

logger = get_logger("core.capture")

# TradingView dark theme background (#131722)
DEFAULT_BACKGROUND = (0x13, 0x17, 0x22)


@dataclass(frozen=True, eq=False)
class CaptureArtifact:
    """A raster snapshot and its RGBA pixel buffer."""
    width: int
    height: int
    pixels: np.ndarray  # shape (height, width, 4), dtype uint8

    def __post_init__(self):
        """Validate buffer shape matches the declared dimensions."""
        if self.width <= 0 or self.height <= 0:
            raise ValueError("capture dimensions must be positive")
        if self.pixels.shape != (self.height, self.width, 4):
            raise ValueError(
                f"pixel buffer shape {self.pixels.shape} does not match "
                f"{self.height}x{self.width}x4"
            )

    @classmethod
    def from_image(cls, image: Image.Image) -> "CaptureArtifact":
        rgba = image.convert("RGBA")
        pixels = np.asarray(rgba, dtype=np.uint8)
        return cls(width=rgba.width, height=rgba.height, pixels=pixels)

    @classmethod
    def from_bytes(cls, data: bytes) -> "CaptureArtifact":
        """Decode PNG/JPEG/WEBP bytes.

        Raises:
            ValueError: If the bytes are not a readable image
        """
        if not data:
            raise ValueError("capture data is empty")
        try:
            with Image.open(io.BytesIO(data)) as image:
                return cls.from_image(image)
        except (OSError, Image.DecompressionBombError) as e:
            raise ValueError(f"capture is not a readable image: {e}") from e

    def to_png_bytes(self) -> bytes:
        buffer = io.BytesIO()
        Image.fromarray(self.pixels).save(buffer, format="PNG")
        return buffer.getvalue()


@dataclass(frozen=True)
class CaptureVerdict:
    """Outcome of validating one capture."""
    accepted: bool
    content_percentage: float
    color_diversity: int
    sampled_pixels: int
    stride: int


class InsufficientContent(ChartRadarError):
    """Raised when a capture looks unrendered."""
    reason = FailureReason.INSUFFICIENT_CONTENT

    def __init__(self, verdict: CaptureVerdict):
        super().__init__(
            f"Chart capture looks incomplete: {verdict.content_percentage:.1f}% content, "
            f"{verdict.color_diversity} color buckets"
        )
        self.verdict = verdict

    @property
    def content_percentage(self) -> float:
        return self.verdict.content_percentage

    @property
    def color_diversity(self) -> int:
        return self.verdict.color_diversity


class CaptureValidator:
    """Sampling heuristic for "does this look like a populated chart".

    Args:
        background: RGB of the chart's empty background
        channel_threshold: Per-channel distance from the background above which
            a pixel counts as content
        min_content_percentage: Minimum share of content samples
        min_color_diversity: Minimum number of distinct quantized colors
        target_samples: Approximate number of pixels to sample
        buckets_per_channel: Quantization levels per channel
    """

    def __init__(
        self,
        background: Tuple[int, int, int] = DEFAULT_BACKGROUND,
        channel_threshold: int = 20,
        min_content_percentage: float = 3.0,
        min_color_diversity: int = 8,
        target_samples: int = 5000,
        buckets_per_channel: int = 10
    ):
        if target_samples <= 0:
            raise ValueError("target_samples must be > 0")
        if buckets_per_channel <= 0:
            raise ValueError("buckets_per_channel must be > 0")
        self.background = np.array(background, dtype=np.int16)
        self.channel_threshold = channel_threshold
        self.min_content_percentage = min_content_percentage
        self.min_color_diversity = min_color_diversity
        self.target_samples = target_samples
        self.buckets_per_channel = buckets_per_channel

    def stride_for(self, width: int, height: int) -> int:
        return max(1, (width * height) // self.target_samples)

    def validate(
        self,
        capture: CaptureArtifact,
        expected_size: Optional[Tuple[int, int]] = None
    ) -> CaptureVerdict:
        """Score a capture.

        Args:
            capture: Snapshot to inspect
            expected_size: (width, height) the widget was rendered at; sets the
                sampling stride. Defaults to the capture's own size.

        Returns:
            CaptureVerdict with the measured statistics
        """
        width, height = expected_size or (capture.width, capture.height)
        if (width, height) != (capture.width, capture.height):
            logger.warning(
                "capture_size_mismatch",
                expected=f"{width}x{height}",
                actual=f"{capture.width}x{capture.height}",
            )
        stride = self.stride_for(width, height)

        samples = capture.pixels.reshape(-1, 4)[::stride]
        sampled = len(samples)

        rgb = samples[:, :3].astype(np.int16)
        opaque = samples[:, 3] > 0
        distance = np.abs(rgb - self.background).max(axis=1)
        non_background = int(np.count_nonzero(opaque & (distance > self.channel_threshold)))

        bucket_size = 256 // self.buckets_per_channel + (1 if 256 % self.buckets_per_channel else 0)
        buckets = rgb // bucket_size
        keys = (buckets[:, 0] * self.buckets_per_channel + buckets[:, 1]) * self.buckets_per_channel + buckets[:, 2]
        color_diversity = int(np.unique(keys).size)

        content_percentage = (non_background / sampled) * 100 if sampled else 0.0
        accepted = (
            content_percentage >= self.min_content_percentage
            and color_diversity >= self.min_color_diversity
        )

        verdict = CaptureVerdict(
            accepted=accepted,
            content_percentage=content_percentage,
            color_diversity=color_diversity,
            sampled_pixels=sampled,
            stride=stride,
        )
        logger.debug(
            "capture_scored",
            accepted=accepted,
            content_percentage=round(content_percentage, 2),
            color_diversity=color_diversity,
            sampled_pixels=sampled,
            stride=stride,
        )
        return verdict

    def validate_or_raise(
        self,
        capture: CaptureArtifact,
        expected_size: Optional[Tuple[int, int]] = None
    ) -> CaptureVerdict:
        """Validate and raise InsufficientContent on rejection."""
        verdict = self.validate(capture, expected_size)
        if not verdict.accepted:
            logger.info(
                "capture_rejected",
                content_percentage=round(verdict.content_percentage, 2),
                color_diversity=verdict.color_diversity,
            )
            raise InsufficientContent(verdict)
        return verdict


CaptureSource = Callable[[], Union[CaptureArtifact, bytes]]


def capture_until_valid(
    capture: CaptureSource,
    validator: CaptureValidator,
    expected_size: Optional[Tuple[int, int]] = None,
    max_attempts: int = 3,
    initial_delay: float = 3.0,
    retry_delay: float = 2.0,
    sleep: Callable[[float], None] = time.sleep
) -> CaptureArtifact:
    """Capture a chart, retrying with a growing wait until it validates.

    Waits ``initial_delay`` for the widget to render, then captures. Each
    rejected attempt waits ``retry_delay * attempt`` before the next one.

    Args:
        capture: Callable returning a CaptureArtifact or encoded image bytes
        validator: Validator to apply
        expected_size: (width, height) of the rendered widget
        max_attempts: Maximum number of captures
        initial_delay: Seconds to wait before the first capture
        retry_delay: Base seconds to wait between attempts
        sleep: Sleep function

    Returns:
        The first accepted capture

    Raises:
        InsufficientContent: If every attempt was rejected
        ValueError: If max_attempts < 1
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be >= 1")

    if initial_delay > 0:
        sleep(initial_delay)

    last_error = None
    for attempt in range(1, max_attempts + 1):
        raw = capture()
        artifact = raw if isinstance(raw, CaptureArtifact) else CaptureArtifact.from_bytes(raw)
        try:
            validator.validate_or_raise(artifact, expected_size)
            return artifact
        except InsufficientContent as e:
            last_error = e
            logger.info("capture_retry", attempt=attempt, max_attempts=max_attempts)
            if attempt < max_attempts:
                sleep(retry_delay * attempt)

    raise last_error
