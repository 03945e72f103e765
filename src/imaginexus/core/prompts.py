"""Prompt composition helpers for the generation service.

The generation model receives a single text prompt. The style and aspect
ratio the user picked are folded into that text; the record stored in the
gallery keeps the user's original prompt.

Usage
-----
::

    build_generation_prompt("a red barn", "watercolor", "16:9")
    # 'Generate a watercolor style image with aspect ratio 16:9 of: a red barn'
"""

from __future__ import annotations

import random
import re

# ---------------------------------------------------------------------------
# Enhancers appended by enhance_prompt().
# ---------------------------------------------------------------------------
PROMPT_ENHANCERS: tuple[str, ...] = (
    "highly detailed",
    "professional quality",
    "sharp focus",
    "intricate details",
    "beautiful composition",
)

# ---------------------------------------------------------------------------
# Phrases that mark a chat message as an image request.  English first, then
# transliterated Hindi.
# ---------------------------------------------------------------------------
IMAGE_REQUEST_TERMS: tuple[str, ...] = (
    "create an image",
    "generate an image",
    "draw a picture",
    "picture of",
    "create a picture",
    "generate a picture",
    "visualize",
    "show me an image",
    "create a visual",
    "design an image",
    "generate a photo",
    "can you create an image",
    "can you draw",
    "create a scene",
    "illustrate",
    "render an image",
    "generate art",
    "create art",
    "show a picture",
    "photo of",
    "photo banao",
    "tasveer banao",
    "chitra banao",
    "image banao",
    "picture banao",
    "ek photo",
    "ek tasveer",
    "ek chitra",
    "dikhao",
    "bana do",
    "create karo",
)

_IMAGE_REQUEST_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"how .{1,20} looks?", re.IGNORECASE),
    re.compile(r"what .{1,20} looks? like", re.IGNORECASE),
    re.compile(r"show .{1,20} (of|about)", re.IGNORECASE),
    re.compile(
        r"(create|make|generate|show) .{1,30} "
        r"(picture|image|photo|visual|illustration)",
        re.IGNORECASE,
    ),
)


def build_generation_prompt(
    prompt: str,
    style: str,
    aspect_ratio: str,
    *,
    quality: str | None = None,
    detail_level: str | None = None,
) -> str:
    """Fold style, aspect ratio and optional quality hints into the prompt.

    Args:
        prompt: The user's scene description.
        style: Style token, e.g. ``"ghibli"``.
        aspect_ratio: Aspect-ratio token, passed through verbatim.
        quality: Optional quality hint (``"standard"`` .. ``"max"``).
        detail_level: Optional resolution hint (``"4k"``, ``"8k"``, ``"16k"``).

    Returns:
        The prompt text sent to the generation model.
    """
    scene = prompt.strip()
    if quality or detail_level:
        qualifiers = []
        if detail_level:
            qualifiers.append(f"{detail_level} resolution")
        if quality:
            qualifiers.append(f"{quality} quality")
        qualifiers.append(f"{style} style")
        return f"Generate a {', '.join(qualifiers)} image with aspect ratio {aspect_ratio} of: {scene}"
    return f"Generate a {style} style image with aspect ratio {aspect_ratio} of: {scene}"


def enhance_prompt(prompt: str, rng: random.Random | None = None) -> str:
    """Append one descriptive enhancer to ``prompt``.

    Args:
        prompt: Prompt to enhance.
        rng: Random source (defaults to the module-level generator).

    Returns:
        ``"<prompt>, <enhancer>"``, or the prompt unchanged if it is blank.
    """
    stripped = prompt.strip()
    if not stripped:
        return prompt
    chooser = rng or random
    return f"{stripped}, {chooser.choice(PROMPT_ENHANCERS)}"


def is_image_generation_prompt(text: str) -> bool:
    """Heuristically decide whether a chat message asks for an image."""
    lowered = text.lower()
    if any(term in lowered for term in IMAGE_REQUEST_TERMS):
        return True
    return any(pattern.search(text) for pattern in _IMAGE_REQUEST_PATTERNS)
