"""
FORMCOACH Coach Service - Precision & Performance Validator

Side-channel statistics over the analysed frame stream: how accurate and
steady the pose data looks, and how fast the pipeline is keeping up.
Metrics are recomputed every VALIDATION_INTERVAL frames over the last
VALIDATION_WINDOW frames.
"""

import math
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

import numpy as np

from core.config import settings as default_settings, Settings
from shared.utils import RollingWindow, setup_logger
from .geometry import AngleMetric, AngleSet, JointType, PoseFrame, BODY_JOINTS, METRIC_ANGLES, landmark_displacement
from .exercise_profiles import AngleThreshold, ExerciseProfile

logger = setup_logger("formcoach.validator")

MISSING_ANGLE_ERROR = 10.0  # degrees charged for an expected angle that was not measured
NEUTRAL_CORRELATION = 85.0
BASELINE_MEMORY_MB = 50.0
MEMORY_PER_FRAME_MB = 0.5

DEFAULT_REFERENCE_RANGES: Dict[AngleMetric, AngleThreshold] = {
    AngleMetric.KNEE: AngleThreshold(0, 180, 90),
    AngleMetric.HIP: AngleThreshold(45, 180, 90),
    AngleMetric.SHOULDER: AngleThreshold(0, 180, 90),
}


# ═══════════════════════════════════════════════════════════════════════════════
# DATA CLASSES
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass
class PrecisionMetrics:
    """Data-quality scores, each 0-100 except the correlation coefficient."""
    angular_accuracy: float = 0.0
    spatial_accuracy: float = 0.0
    temporal_consistency: float = 0.0
    correlation_coefficient: float = 0.0
    frame_stability: float = 0.0
    overall_precision: float = 0.0

    def to_dict(self) -> Dict[str, float]:
        return {
            "angular_accuracy": round(self.angular_accuracy, 1),
            "spatial_accuracy": round(self.spatial_accuracy, 1),
            "temporal_consistency": round(self.temporal_consistency, 1),
            "correlation_coefficient": round(self.correlation_coefficient, 1),
            "frame_stability": round(self.frame_stability, 1),
            "overall_precision": round(self.overall_precision, 1),
        }


@dataclass
class PerformanceMetrics:
    """Pipeline throughput and coarse resource estimates."""
    fps: int = 0
    latency_ms: float = 0.0
    memory_usage_mb: float = BASELINE_MEMORY_MB
    cpu_usage: float = 0.0
    battery_impact: float = 0.0
    frame_drops: int = 0

    def to_dict(self) -> Dict[str, float]:
        return {
            "fps": self.fps,
            "latency_ms": round(self.latency_ms, 2),
            "memory_usage_mb": round(self.memory_usage_mb, 1),
            "cpu_usage": round(self.cpu_usage, 1),
            "battery_impact": round(self.battery_impact, 1),
            "frame_drops": self.frame_drops,
        }


@dataclass
class ValidationReport:
    """Snapshot of the validator state."""
    precision: PrecisionMetrics
    performance: PerformanceMetrics
    recommendations: List[str] = field(default_factory=list)
    is_within_targets: bool = False

    def to_dict(self) -> Dict[str, object]:
        return {
            "precision": self.precision.to_dict(),
            "performance": self.performance.to_dict(),
            "recommendations": self.recommendations,
            "is_within_targets": self.is_within_targets,
        }


@dataclass
class ValidatedFrame:
    """One frame as seen by the validator."""
    timestamp: float
    frame: PoseFrame
    angles: AngleSet
    processing_time_ms: float


# ═══════════════════════════════════════════════════════════════════════════════
# VALIDATOR
# ═══════════════════════════════════════════════════════════════════════════════

class PrecisionValidator:
    """
    Rolling precision and performance statistics.

    Usage:
        validator.start_validation()
        started = clock()
        ... analyse the frame ...
        validator.validate_frame(frame, angles, started)
        report = validator.get_validation_report()
    """

    def __init__(self, settings: Optional[Settings] = None, clock: Callable[[], float] = time.perf_counter):
        self.settings = settings or default_settings
        self.clock = clock
        self.history: RollingWindow[ValidatedFrame] = RollingWindow(self.settings.VALIDATION_HISTORY_SIZE)
        self.precision = PrecisionMetrics()
        self.performance = PerformanceMetrics()
        self.reference_ranges: Dict[AngleMetric, AngleThreshold] = dict(DEFAULT_REFERENCE_RANGES)
        self.reference_ideals: Dict[AngleMetric, float] = {}
        self.primary_metric = AngleMetric.KNEE
        self.frame_count = 0
        self.started_at: Optional[float] = None

    # ═══════════════════════════════════════════════════════════════════════════
    # LIFECYCLE
    # ═══════════════════════════════════════════════════════════════════════════

    def start_validation(self):
        """Reset the counters and start the elapsed-time clock."""
        self.history.clear()
        self.frame_count = 0
        self.precision = PrecisionMetrics()
        self.performance = PerformanceMetrics()
        self.started_at = self.clock()
        logger.info("Precision validation started")

    def set_reference_profile(self, profile: ExerciseProfile):
        """Use an exercise's angle thresholds as expected ranges and its ideals as reference."""
        self.reference_ranges = dict(profile.angle_thresholds)
        self.primary_metric = profile.primary_metric
        self.load_reference_data(profile.ideal_angles)

    def load_reference_data(self, reference: Dict[AngleMetric, float]):
        """Reference angle values the correlation metric compares against."""
        self.reference_ideals = dict(reference)

    def cleanup(self):
        """Release buffers."""
        self.history.clear()
        self.frame_count = 0
        self.started_at = None
        self.reference_ideals = {}
        self.reference_ranges = dict(DEFAULT_REFERENCE_RANGES)

    def validate_frame(self, frame: PoseFrame, angles: AngleSet, processing_started_at: float):
        """
        Record one analysed frame.

        Args:
            frame: Frame as analysed
            angles: Angles used for the frame
            processing_started_at: Clock reading taken when processing of the frame began
        """
        now = self.clock()
        if self.started_at is None:
            self.started_at = processing_started_at

        self.history.append(ValidatedFrame(
            timestamp=now,
            frame=frame,
            angles=angles,
            processing_time_ms=(now - processing_started_at) * 1000,
        ))
        self.frame_count += 1

        if self.frame_count % self.settings.VALIDATION_INTERVAL == 0:
            self._update_metrics()

    def _update_metrics(self):
        window = self.history.latest(self.settings.VALIDATION_WINDOW)
        if not window:
            return
        self.precision = self._calculate_precision(window)
        self.performance = self._calculate_performance(window)
        logger.debug(
            f"Validation: precision={self.precision.overall_precision:.1f} "
            f"fps={self.performance.fps} latency={self.performance.latency_ms:.1f}ms"
        )

    # ═══════════════════════════════════════════════════════════════════════════
    # PRECISION
    # ═══════════════════════════════════════════════════════════════════════════

    def _calculate_precision(self, window: List[ValidatedFrame]) -> PrecisionMetrics:
        metrics = PrecisionMetrics(
            angular_accuracy=self._angular_accuracy(window),
            spatial_accuracy=self._spatial_accuracy(window),
            temporal_consistency=self._temporal_consistency(window),
            correlation_coefficient=self._correlation(window),
            frame_stability=self._frame_stability(window),
        )
        metrics.overall_precision = (
            metrics.angular_accuracy * 0.3
            + metrics.spatial_accuracy * 0.2
            + metrics.temporal_consistency * 0.2
            + metrics.correlation_coefficient * 0.2
            + metrics.frame_stability * 0.1
        )
        return metrics

    def _angular_accuracy(self, window: List[ValidatedFrame]) -> float:
        """Mean deviation outside the expected ranges, scored against TARGET_ANGULAR_ACCURACY."""
        errors = []
        for entry in window:
            for metric, expected in self.reference_ranges.items():
                value = entry.angles.metric(metric)
                errors.append(MISSING_ANGLE_ERROR if value is None else expected.deviation(value))
        if not errors:
            return 0.0
        average_error = float(np.mean(errors))
        return max(0.0, 100 - average_error / self.settings.TARGET_ANGULAR_ACCURACY * 100)

    @staticmethod
    def _spatial_accuracy(window: List[ValidatedFrame]) -> float:
        if len(window) < 2:
            return 100.0
        shifts = []
        for previous, current in zip(window, window[1:]):
            shoulder = landmark_displacement(current.frame, previous.frame, JointType.LEFT_SHOULDER)
            hip = landmark_displacement(current.frame, previous.frame, JointType.LEFT_HIP)
            shifts.append(max(shoulder, hip))
        return max(0.0, 100 - float(np.mean(shifts)) * 1000)

    def _temporal_consistency(self, window: List[ValidatedFrame]) -> float:
        values = [entry.angles.metric(self.primary_metric) for entry in window]
        variations = [
            abs(current - previous)
            for previous, current in zip(values, values[1:])
            if previous is not None and current is not None
        ]
        if not variations:
            return 100.0
        return max(0.0, 100 - float(np.mean(variations)) * 2)

    def _correlation(self, window: List[ValidatedFrame]) -> float:
        """
        Pearson correlation (x100) between measured and reference angles.

        Bilateral metrics contribute one pair per side. A frame needs at least
        three pairs with spread in both series; otherwise the neutral value
        is returned.
        """
        coefficients = []
        for entry in window:
            pairs = [
                (entry.angles.get(name), ideal)
                for metric, ideal in self.reference_ideals.items()
                for name in METRIC_ANGLES[metric]
                if entry.angles.get(name) is not None
            ]
            if len(pairs) < 3:
                continue
            measured, reference = np.array(pairs, dtype=float).T
            if np.std(measured) < 1e-9 or np.std(reference) < 1e-9:
                continue
            coefficients.append(float(np.corrcoef(measured, reference)[0, 1]))

        if not coefficients:
            return NEUTRAL_CORRELATION
        return max(0.0, min(100.0, float(np.mean(coefficients)) * 100))

    def _frame_stability(self, window: List[ValidatedFrame]) -> float:
        if len(window) < 2:
            return 100.0
        threshold = self.settings.LANDMARK_VISIBILITY_THRESHOLD
        pair_scores = []
        for previous, current in zip(window, window[1:]):
            scores = [
                max(0.0, 100 - landmark_displacement(current.frame, previous.frame, joint) * 1000)
                for joint in BODY_JOINTS
                if current.frame.visibility(joint) > threshold and previous.frame.visibility(joint) > threshold
            ]
            pair_scores.append(float(np.mean(scores)) if scores else 0.0)
        return float(np.mean(pair_scores))

    # ═══════════════════════════════════════════════════════════════════════════
    # PERFORMANCE
    # ═══════════════════════════════════════════════════════════════════════════

    def _calculate_performance(self, window: List[ValidatedFrame]) -> PerformanceMetrics:
        cfg = self.settings
        now = self.clock()
        elapsed = now - (self.started_at if self.started_at is not None else now)
        fps = int(round(self.frame_count / elapsed)) if elapsed > 0 else 0
        latency = float(np.mean([entry.processing_time_ms for entry in window]))

        frame_budget_ms = 1000 / cfg.TARGET_FPS
        cpu = min(100.0, latency / frame_budget_ms * 100)
        expected_frames = math.floor(elapsed * cfg.TARGET_FPS)

        return PerformanceMetrics(
            fps=fps,
            latency_ms=latency,
            memory_usage_mb=BASELINE_MEMORY_MB + len(self.history) * MEMORY_PER_FRAME_MB,
            cpu_usage=cpu,
            battery_impact=min(100.0, fps / cfg.TARGET_FPS * 30 + cpu / 100 * 50 + 20),
            frame_drops=max(0, expected_frames - self.frame_count),
        )

    # ═══════════════════════════════════════════════════════════════════════════
    # REPORT
    # ═══════════════════════════════════════════════════════════════════════════

    def get_validation_report(self) -> ValidationReport:
        return ValidationReport(
            precision=self.precision,
            performance=self.performance,
            recommendations=self._generate_recommendations(),
            is_within_targets=self._is_within_targets(),
        )

    def _is_within_targets(self) -> bool:
        cfg = self.settings
        return (
            self.precision.angular_accuracy >= 90
            and self.precision.correlation_coefficient >= 90
            and self.performance.latency_ms <= cfg.MAX_LATENCY_MS
            and self.performance.fps >= cfg.MIN_FPS
        )

    def _generate_recommendations(self) -> List[str]:
        cfg = self.settings
        recommendations = []
        if self.precision.angular_accuracy < 90:
            recommendations.append("Improve angular calibration: keep the camera level and the whole body in frame")
        if self.performance.fps < cfg.MIN_FPS:
            recommendations.append("Optimize frame processing to reach the target frame rate")
        if self.performance.latency_ms > cfg.MAX_LATENCY_MS:
            recommendations.append("Reduce processing latency")
        if self.performance.memory_usage_mb > 200:
            recommendations.append("Optimize memory usage of the frame history")
        return recommendations
