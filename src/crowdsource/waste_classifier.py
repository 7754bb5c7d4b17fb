"""
Waste classifier for user-submitted report photos
Mock model: the result is an annotation on the report, never a gate
"""

import logging
import random
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from src.core.constants import CLASSIFIER_LABELS

logger = logging.getLogger(__name__)


@dataclass
class Classification:
    """Result of classifying one image."""
    is_waste: bool
    confidence: float
    label: Optional[str] = None
    waste_type: Optional[str] = None
    suggestions: List[str] = field(default_factory=list)
    model_version: str = "mock-1.0"

    @property
    def quality_score(self) -> int:
        """0-100 score combining the waste decision and confidence."""
        score = 40 if self.is_waste else 0
        return round(score + self.confidence * 60)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "is_waste": self.is_waste,
            "waste_type": self.waste_type,
            "label": self.label,
            "confidence": self.confidence,
            "quality_score": self.quality_score,
            "suggestions": self.suggestions,
            "model_version": self.model_version,
        }


class MockWasteClassifier:
    """
    Stand-in for a real image model.

    Larger images score higher confidence, mimicking the effect of photo
    quality. Pass a seed for reproducible results.
    """

    LARGE_IMAGE_BYTES = 500_000
    MEDIUM_IMAGE_BYTES = 100_000

    # Below this a waste classification asks for a better photo
    LOW_CONFIDENCE = 0.6

    def __init__(self, seed: Optional[int] = None):
        self._random = random.Random(seed)
        self.labels = list(CLASSIFIER_LABELS)

    def classify(self, image_data: bytes) -> Classification:
        """
        Classify an image.

        Args:
            image_data: Raw image bytes

        Returns:
            Classification
        """
        size = len(image_data)
        factor = self._random.random()

        if size > self.LARGE_IMAGE_BYTES:
            confidence = 0.7 + factor * 0.3
            is_waste = confidence > 0.75
        elif size > self.MEDIUM_IMAGE_BYTES:
            confidence = 0.4 + factor * 0.4
            is_waste = confidence > 0.5
        else:
            confidence = 0.2 + factor * 0.4
            is_waste = confidence > 0.4

        confidence = round(confidence, 2)

        if not is_waste:
            result = Classification(
                is_waste=False,
                confidence=confidence,
                suggestions=[
                    "This image does not appear to contain waste",
                    "Make sure the waste is the main subject of the photo",
                ],
            )
        else:
            label = self._random.choice(self.labels)
            suggestions = []
            if confidence < self.LOW_CONFIDENCE:
                suggestions = [
                    "Try taking the photo in better lighting",
                    "Make sure the waste is clearly visible",
                ]
            result = Classification(
                is_waste=True,
                confidence=confidence,
                label=label,
                waste_type=CLASSIFIER_LABELS[label],
                suggestions=suggestions,
            )

        logger.debug(f"Classified {size} byte image: waste={result.is_waste} ({confidence})")
        return result
