"""Prompt tag taxonomy, tag extraction and prompt composition.

A :class:`TagSelection` pairs a free-text prompt with structured style
choices. Each tag has a short display ``label`` and the prompt fragment
(``value``) that is appended to the prompt sent to the provider.

Groups
------
- **art_style**, **theme_style**, **mood**: single choice (styles conflict)
- **technical**, **composition**, **enhancement**: multiple choice
- quality enhancement: a boolean that appends :data:`QUALITY_ENHANCEMENT`

Prompt Order
------------
:func:`build_prompt` joins the parts with ``", "`` in a fixed order::

    base, art style, theme, mood, technical..., composition...,
    enhancement..., quality phrase

Downstream statistics key on the composed prompt, so the order must not
change. :func:`extract_tags` walks the selection in the same order.
"""

import logging
from dataclasses import dataclass

from .models import TagCategory, TagSelection, TagUsage

logger = logging.getLogger(__name__)

QUALITY_ENHANCEMENT = "high quality, detailed, masterpiece, best quality, 4k resolution"
QUALITY_ENHANCEMENT_NAME = "Quality Enhancement"

PROMPT_SEPARATOR = ", "
MAX_DISPLAY_LENGTH = 50


@dataclass(frozen=True)
class Tag:
    """A selectable tag: display label, prompt fragment and a longer description."""

    label: str
    value: str
    description: str


ART_STYLE_TAGS: tuple[Tag, ...] = (
    Tag(
        "Photorealistic",
        "photorealistic, hyperrealistic, professional photography, 8K ultra-detailed",
        "Photographic realism",
    ),
    Tag(
        "Cinematic",
        "cinematic photography, film photography, dramatic lighting, cinematic composition",
        "Film-grade photography",
    ),
    Tag(
        "Oil Painting",
        "oil painting, classical art, brush strokes, Renaissance style",
        "Classical oil painting",
    ),
    Tag(
        "Watercolor",
        "watercolor painting, soft brushes, artistic, flowing colors",
        "Soft watercolor",
    ),
    Tag(
        "Anime",
        "anime style, manga, japanese animation, cel shading",
        "Japanese animation style",
    ),
    Tag(
        "Pixel Art",
        "pixel art, 8-bit, retro gaming style, pixelated",
        "Retro pixel art",
    ),
    Tag(
        "Pencil Sketch",
        "pencil sketch, black and white, hand drawn, charcoal drawing",
        "Hand-drawn sketch",
    ),
    Tag(
        "Concept Art",
        "concept art, digital painting, matte painting, professional illustration",
        "Game concept art",
    ),
    Tag(
        "3D Render",
        "3D render, CGI, ray tracing, volumetric lighting, subsurface scattering",
        "Rendered 3D scene",
    ),
    Tag(
        "Impressionist",
        "impressionist style, soft focus, painterly, artistic brushwork",
        "Impressionist painting",
    ),
)

THEME_STYLE_TAGS: tuple[Tag, ...] = (
    Tag(
        "Cyberpunk",
        "cyberpunk, neon lights, futuristic city, dystopian, rain-soaked streets",
        "Neon future city",
    ),
    Tag(
        "Sci-Fi",
        "sci-fi, futuristic, space technology, holographic displays, advanced technology",
        "Science fiction scene",
    ),
    Tag(
        "Fantasy",
        "fantasy, magical, mythical creatures, enchanted forest, mystical atmosphere",
        "Magical fantasy world",
    ),
    Tag(
        "Steampunk",
        "steampunk, vintage machinery, brass gears, Victorian era, industrial",
        "Victorian machinery",
    ),
    Tag(
        "Chinese Style",
        "chinese style, traditional, elegant, ink wash painting, oriental aesthetics",
        "Traditional Chinese aesthetics",
    ),
    Tag(
        "Modern Minimal",
        "modern, minimalist, clean design, sleek, contemporary",
        "Modern minimalist design",
    ),
    Tag(
        "Retro Futurism",
        "retro-futurism, vintage sci-fi, 80s aesthetic, synthwave, vaporwave",
        "Retro future",
    ),
    Tag(
        "Biophilic",
        "biophilic design, organic forms, nature-inspired, eco-friendly, sustainable",
        "Nature-inspired design",
    ),
    Tag(
        "Industrial",
        "industrial design, metallic textures, concrete, raw materials, urban decay",
        "Industrial wasteland",
    ),
    Tag(
        "Gothic",
        "gothic architecture, dark romantic, ornate details, mysterious atmosphere",
        "Dark gothic romance",
    ),
)

MOOD_TAGS: tuple[Tag, ...] = (
    Tag(
        "Warm & Bright",
        "warm lighting, bright, cheerful, golden hour, soft sunlight",
        "Warm bright atmosphere",
    ),
    Tag(
        "Dark & Mysterious",
        "dark, mysterious, moody lighting, deep shadows, dramatic chiaroscuro",
        "Dark mysterious atmosphere",
    ),
    Tag(
        "Dreamy",
        "dreamy, ethereal, soft, beautiful, pastel colors, fairy-tale like",
        "Ethereal dreamlike atmosphere",
    ),
    Tag(
        "Epic",
        "epic, dramatic, cinematic, powerful, grand scale, awe-inspiring",
        "Epic grand atmosphere",
    ),
    Tag(
        "Serene",
        "peaceful, calm, serene, tranquil, meditation, zen atmosphere",
        "Calm zen atmosphere",
    ),
    Tag(
        "Energetic",
        "energetic, dynamic, vibrant, lively, high-energy, action-packed",
        "Vibrant dynamic atmosphere",
    ),
    Tag(
        "Melancholic",
        "melancholic, contemplative, nostalgic, bittersweet, introspective",
        "Nostalgic contemplative atmosphere",
    ),
    Tag(
        "Luxurious",
        "luxurious, elegant, sophisticated, premium, high-end, glamorous",
        "Premium glamorous atmosphere",
    ),
    Tag(
        "Wild",
        "wild, primal, untamed, rugged, natural, raw power",
        "Primal untamed atmosphere",
    ),
    Tag(
        "High-Tech",
        "futuristic, high-tech, digital, cyber, holographic, technological",
        "Digital technological atmosphere",
    ),
)

TECHNICAL_TAGS: tuple[Tag, ...] = (
    Tag(
        "85mm Lens",
        "85mm lens, portrait lens, shallow depth of field",
        "85mm portrait lens",
    ),
    Tag(
        "Wide Angle",
        "wide-angle lens, 24mm, expansive view, environmental context",
        "24mm wide-angle lens",
    ),
    Tag(
        "Macro",
        "macro photography, extreme close-up, intricate details, magnified",
        "Macro close-up",
    ),
    Tag(
        "Telephoto",
        "telephoto lens, 200mm, compressed perspective, background blur",
        "200mm telephoto lens",
    ),
    Tag(
        "Fisheye",
        "fisheye lens, distorted perspective, 180-degree view, curved edges",
        "Fisheye distortion",
    ),
    Tag(
        "Shallow Depth of Field",
        "shallow depth of field, f/1.4, bokeh effect, selective focus",
        "Bokeh background",
    ),
    Tag(
        "Deep Focus",
        "deep focus, f/11, everything in focus, landscape photography",
        "Everything in focus",
    ),
    Tag(
        "Golden Hour",
        "golden hour lighting, warm sunlight, magic hour, soft shadows",
        "Golden hour light",
    ),
    Tag(
        "Blue Hour",
        "blue hour, twilight, evening atmosphere, city lights",
        "Twilight light",
    ),
    Tag(
        "Studio Lighting",
        "studio lighting, softbox, professional lighting setup, controlled environment",
        "Professional studio lighting",
    ),
)

COMPOSITION_TAGS: tuple[Tag, ...] = (
    Tag(
        "Rule of Thirds",
        "rule of thirds, balanced composition, dynamic framing",
        "Rule of thirds framing",
    ),
    Tag(
        "Centered",
        "centered composition, symmetrical, balanced, focal point",
        "Symmetrical centered framing",
    ),
    Tag(
        "Low Angle",
        "low angle shot, worm eye view, heroic perspective, dramatic angle",
        "Low angle view",
    ),
    Tag(
        "High Angle",
        "high angle shot, bird eye view, overhead perspective, aerial view",
        "Overhead view",
    ),
    Tag(
        "Close-Up",
        "close-up shot, intimate framing, detailed focus, emotional connection",
        "Close-up framing",
    ),
    Tag(
        "Wide Shot",
        "wide shot, establishing shot, environmental context, full scene",
        "Full scene framing",
    ),
    Tag(
        "Medium Shot",
        "medium shot, upper body, conversational framing, portrait style",
        "Upper body framing",
    ),
    Tag(
        "Extreme Close-Up",
        "extreme close-up, macro detail, textural focus, intimate detail",
        "Extreme close-up framing",
    ),
    Tag(
        "Dynamic",
        "dynamic composition, diagonal lines, movement, energy",
        "Diagonal motion framing",
    ),
    Tag(
        "Minimalist",
        "minimalist composition, negative space, clean lines, simple elegance",
        "Negative space framing",
    ),
)

ENHANCEMENT_TAGS: tuple[Tag, ...] = (
    Tag(
        "Ultra Detailed",
        "highly detailed, intricate details, ultra-detailed textures, photorealistic details",
        "Ultra fine detail",
    ),
    Tag(
        "Film Look",
        "cinematic composition, film photography, movie-like quality, Hollywood style",
        "Movie-like quality",
    ),
    Tag(
        "Professional Photography",
        "professional photography, studio quality, commercial grade, award-winning",
        "Commercial photo quality",
    ),
    Tag(
        "Masterpiece",
        "masterpiece, award winning, gallery quality, museum piece",
        "Gallery masterpiece",
    ),
    Tag(
        "Volumetric Light",
        "volumetric lighting, god rays, atmospheric lighting, light beams",
        "God rays",
    ),
    Tag(
        "Color Grading",
        "color grading, cinematic colors, film look, professional color correction",
        "Cinematic color grading",
    ),
    Tag(
        "HDR",
        "HDR photography, high dynamic range, enhanced contrast, vivid colors",
        "High dynamic range",
    ),
    Tag(
        "Film Grain",
        "film grain, analog photography, vintage film look, organic texture",
        "Analog film texture",
    ),
)

TAG_GROUPS: dict[str, tuple[Tag, ...]] = {
    "art_style": ART_STYLE_TAGS,
    "theme_style": THEME_STYLE_TAGS,
    "mood": MOOD_TAGS,
    "technical": TECHNICAL_TAGS,
    "composition": COMPOSITION_TAGS,
    "enhancement": ENHANCEMENT_TAGS,
}

# prompt fragment -> display label
TAG_NAME_MAP: dict[str, str] = {
    tag.value: tag.label for group in TAG_GROUPS.values() for tag in group
}
TAG_NAME_MAP[QUALITY_ENHANCEMENT] = QUALITY_ENHANCEMENT_NAME


def get_tag_display_name(value: str) -> str:
    """Return the display label for a tag's prompt fragment.

    Exact matches win; otherwise the first fragment that contains, or is
    contained in, ``value``. Unknown values are returned as-is, truncated to
    :data:`MAX_DISPLAY_LENGTH` characters.
    """
    if value in TAG_NAME_MAP:
        return TAG_NAME_MAP[value]

    for fragment, label in TAG_NAME_MAP.items():
        if fragment in value or value in fragment:
            return label

    logger.debug(f"No display name for tag value: {value[:80]}")
    if len(value) > MAX_DISPLAY_LENGTH:
        return value[:MAX_DISPLAY_LENGTH] + "..."
    return value


def get_tags_by_category(category: str) -> tuple[Tag, ...]:
    """Return the tag group of ``category`` (empty for unknown categories)."""
    return TAG_GROUPS.get(category, ())


def _ordered_values(selection: TagSelection) -> list[tuple[TagCategory, str]]:
    entries: list[tuple[TagCategory, str]] = []
    if selection.art_style:
        entries.append(("art_style", selection.art_style))
    if selection.theme_style:
        entries.append(("theme_style", selection.theme_style))
    if selection.mood:
        entries.append(("mood", selection.mood))
    entries.extend(("technical", value) for value in selection.technical if value)
    entries.extend(("composition", value) for value in selection.composition if value)
    entries.extend(("enhancement", value) for value in selection.enhancement if value)
    return entries


def extract_tags(selection: TagSelection | None) -> list[TagUsage]:
    """Flatten a tag selection into ``TagUsage`` entries.

    Args:
        selection: Tag selection, or None

    Returns:
        Tags in prompt order; the quality phrase comes last (category
        ``enhancement``) when quality enhancement is enabled
    """
    if selection is None:
        return []

    tags = [
        TagUsage(name=get_tag_display_name(value), category=category, value=value)
        for category, value in _ordered_values(selection)
    ]
    if selection.quality_enhanced:
        tags.append(
            TagUsage(
                name=QUALITY_ENHANCEMENT_NAME,
                category="enhancement",
                value=QUALITY_ENHANCEMENT,
            )
        )
    return tags


def build_prompt(base: str, selection: TagSelection | None) -> str:
    """Compose the provider prompt from the base prompt and tag selection.

    Args:
        base: User's free-text prompt
        selection: Tag selection, or None

    Returns:
        Non-empty parts joined with ``", "`` in the fixed prompt order
    """
    parts = [base.strip()]
    if selection is not None:
        parts.append(selection.art_style or "")
        parts.append(selection.theme_style or "")
        parts.append(selection.mood or "")
        parts.append(PROMPT_SEPARATOR.join(v for v in selection.technical if v))
        parts.append(PROMPT_SEPARATOR.join(v for v in selection.composition if v))
        parts.append(PROMPT_SEPARATOR.join(v for v in selection.enhancement if v))
        if selection.quality_enhanced:
            parts.append(QUALITY_ENHANCEMENT)

    return PROMPT_SEPARATOR.join(part for part in parts if part and part.strip())
