"""Render style presets understood by the diffusion backends."""

from dataclasses import asdict, dataclass
from typing import Dict, Optional


@dataclass(frozen=True)
class StylePreset:
    name: str
    description: str
    steps: int
    denoising_strength: float

    def to_dict(self) -> dict:
        return asdict(self)


PRESETS: Dict[str, StylePreset] = {
    p.name: p
    for p in (
        StylePreset("photorealistic", "Photorealistic architectural visualization", 30, 0.5),
        StylePreset("sketch", "Architectural pencil sketch", 25, 0.7),
        StylePreset("watercolor", "Watercolor architectural illustration", 28, 0.65),
        StylePreset("blueprint", "Technical blueprint style", 25, 0.8),
        StylePreset("night_render", "Nighttime architectural visualization", 35, 0.55),
        StylePreset("minimalist", "Minimalist architectural rendering", 25, 0.6),
    )
}


def get_preset(name: str) -> Optional[StylePreset]:
    """Look up a preset. Unknown names are not an error; the backend gets them as-is."""
    return PRESETS.get(name)
