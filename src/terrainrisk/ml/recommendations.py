"""Fixed advisory texts keyed by risk label.

Labels are matched exactly as the classifier emits them; no case or
whitespace normalization is applied.
"""

from __future__ import annotations

from types import MappingProxyType
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Mapping

DEFAULT_RECOMMENDATION = "No recommendations available."

RECOMMENDATIONS: Mapping[str, str] = MappingProxyType(
    {
        "Highrisk": (
            "Take immediate action! Consider controlled burn, Maintain 30-100 ft of clear space "
            "around boundary, Create barrier to contain fire, Clear flammable vegetation and debris. "
            "Additionally, Educate community on fire safety to enhance preparedness and response!"
        ),
        "Mediumrisk": (
            "Be on Alert! Consider regular vegetation trimming, Controlled burning, Educate community  "
            "and Emergency planning to mitigate fire risks."
        ),
        "Lowrisk": (
            "Maintain basic precautions, Keep flammable materials away from heat sources, "
            "Educate community to minimize potential fire risks."
        ),
    }
)

KNOWN_LABELS: frozenset[str] = frozenset(RECOMMENDATIONS)


def get_recommendation(label: str) -> str:
    """Return the advisory text for ``label``, or the default for unknown labels."""
    return RECOMMENDATIONS.get(label, DEFAULT_RECOMMENDATION)
