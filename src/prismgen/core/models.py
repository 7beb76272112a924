"""Data models for generation requests, results and batches."""

import asyncio
import logging
import time
import uuid
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Literal

logger = logging.getLogger(__name__)

AspectRatio = Literal["1:1", "16:9", "9:16", "4:3", "3:4"]
OutputFormat = Literal["webp", "jpg", "png"]
FeedbackType = Literal["like", "dislike"]
ResultStatus = Literal["completed", "failed"]
TagCategory = Literal[
    "art_style", "theme_style", "mood", "technical", "composition", "enhancement"
]

ASPECT_RATIOS: tuple[str, ...] = ("1:1", "16:9", "9:16", "4:3", "3:4")
OUTPUT_FORMATS: tuple[str, ...] = ("webp", "jpg", "png")
FEEDBACK_TYPES: tuple[str, ...] = ("like", "dislike")
MAX_PROMPT_LENGTH = 1000


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


@dataclass
class TagSelection:
    """Structured tag selection made alongside a prompt.

    Single-choice categories hold one raw prompt value (or None); the
    multi-choice categories hold lists of raw values. ``quality_enhanced``
    appends the fixed quality phrase.
    """

    art_style: str | None = None
    theme_style: str | None = None
    mood: str | None = None
    technical: list[str] = field(default_factory=list)
    composition: list[str] = field(default_factory=list)
    enhancement: list[str] = field(default_factory=list)
    quality_enhanced: bool = False

    def is_empty(self) -> bool:
        """True when nothing is selected."""
        return not (
            self.art_style
            or self.theme_style
            or self.mood
            or self.technical
            or self.composition
            or self.enhancement
            or self.quality_enhanced
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TagSelection":
        return cls(
            art_style=data.get("art_style") or None,
            theme_style=data.get("theme_style") or None,
            mood=data.get("mood") or None,
            technical=list(data.get("technical") or []),
            composition=list(data.get("composition") or []),
            enhancement=list(data.get("enhancement") or []),
            quality_enhanced=bool(data.get("quality_enhanced", False)),
        )


@dataclass
class GenerationConfig:
    """Parameters of one generation request.

    Bounded fields are not checked here: limits depend on the selected
    adapter's capabilities and are enforced by ``ProviderAdapter.validate``.
    """

    prompt: str
    model: str
    aspect_ratio: str = "1:1"
    num_outputs: int = 1
    output_format: str = "webp"
    num_inference_steps: int = 4
    negative_prompt: str | None = None
    seed: int | None = None
    selected_tags: TagSelection | None = None

    def copy(self, **changes: Any) -> "GenerationConfig":
        """Return a copy with an independent tag selection."""
        tags = self.selected_tags
        snapshot = replace(
            self,
            selected_tags=TagSelection.from_dict(tags.to_dict()) if tags else None,
        )
        return replace(snapshot, **changes) if changes else snapshot

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        if self.selected_tags is None:
            data["selected_tags"] = None
        return data


@dataclass
class ModelCapabilities:
    """Capability limits an adapter validates against."""

    supports_aspect_ratio: bool = True
    max_steps: int = 50
    max_outputs: int = 4
    supported_formats: tuple[str, ...] = OUTPUT_FORMATS


@dataclass
class ModelSpec:
    """A generation model offered by a provider.

    ``version`` is the provider-side model reference. ``optimal_max_steps``
    is the step count a fast model is clamped to after validation.
    ``input_style`` selects how the provider input is shaped: models that take
    an ``aspect_ratio`` argument, or models rendered at a fixed size.
    """

    id: str
    name: str
    provider: str = "replicate"
    description: str = ""
    version: str = ""
    cost_per_generation: float = 0.0
    tags: list[str] = field(default_factory=list)
    default_config: dict[str, Any] = field(default_factory=dict)
    capabilities: ModelCapabilities = field(default_factory=ModelCapabilities)
    optimal_max_steps: int | None = None
    input_style: Literal["aspect_ratio", "fixed_size"] = "aspect_ratio"
    enabled: bool = True

    @property
    def default_steps(self) -> int:
        return int(self.default_config.get("num_inference_steps") or 4)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["capabilities"]["supported_formats"] = list(self.capabilities.supported_formats)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ModelSpec":
        caps = dict(data.get("capabilities") or {})
        if "supported_formats" in caps:
            caps["supported_formats"] = tuple(caps["supported_formats"])
        return cls(
            id=data["id"],
            name=data.get("name", data["id"]),
            provider=data.get("provider", "replicate"),
            description=data.get("description", ""),
            version=data.get("version", ""),
            cost_per_generation=float(data.get("cost_per_generation", 0.0)),
            tags=list(data.get("tags") or []),
            default_config=dict(data.get("default_config") or {}),
            capabilities=ModelCapabilities(**caps),
            optimal_max_steps=data.get("optimal_max_steps"),
            input_style=data.get("input_style", "aspect_ratio"),
            enabled=bool(data.get("enabled", True)),
        )


@dataclass
class ValidationResult:
    """Outcome of ``ProviderAdapter.validate``. Warnings never block."""

    is_valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


@dataclass
class AdapterStatus:
    """Transient health snapshot of an adapter. Never persisted."""

    is_available: bool
    is_configured: bool
    last_error: str | None = None
    latency_ms: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class AdapterMetadata:
    """Descriptive information about an adapter implementation."""

    id: str
    name: str
    version: str = "1.0.0"
    description: str = ""
    author: str = ""
    homepage: str | None = None
    supported_features: list[str] = field(default_factory=list)
    required_config: list[str] = field(default_factory=list)


@dataclass
class StoredAsset:
    """Location of an image migrated to durable storage."""

    key: str
    url: str
    public_url: str | None = None
    size: int = 0
    etag: str = ""

    @property
    def best_url(self) -> str:
        """Public URL when the bucket has one, else the (signed) storage URL."""
        return self.public_url or self.url


@dataclass
class Feedback:
    """Local mirror of the user's feedback on a result."""

    type: FeedbackType | None
    submitted_at: datetime | None = None


@dataclass
class TagUsage:
    """Flat tag entry used for statistics and feedback aggregation."""

    name: str
    category: TagCategory
    value: str

    def to_dict(self) -> dict[str, str]:
        return asdict(self)


@dataclass
class GenerationResult:
    """One generated image."""

    id: str
    image_url: str
    prompt: str
    config: GenerationConfig
    created_at: datetime = field(default_factory=utcnow)
    status: ResultStatus = "completed"
    original_image_url: str | None = None
    stored_asset: StoredAsset | None = None
    feedback: Feedback | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def feedback_type(self) -> FeedbackType | None:
        return self.feedback.type if self.feedback else None

    def apply_stored_asset(self, asset: StoredAsset) -> None:
        """Rewrite the image URL to durable storage, keeping the original."""
        if self.original_image_url is None:
            self.original_image_url = self.image_url
        self.stored_asset = asset
        self.image_url = asset.best_url

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "image_url": self.image_url,
            "original_image_url": self.original_image_url,
            "prompt": self.prompt,
            "config": self.config.to_dict(),
            "created_at": self.created_at.isoformat(),
            "status": self.status,
            "stored_asset": asdict(self.stored_asset) if self.stored_asset else None,
            "feedback": (
                {
                    "type": self.feedback.type,
                    "submitted_at": (
                        self.feedback.submitted_at.isoformat()
                        if self.feedback.submitted_at
                        else None
                    ),
                }
                if self.feedback
                else None
            ),
            "metadata": dict(self.metadata),
        }


@dataclass
class GenerationRecord:
    """Durable record of a finished batch, written by the persistence pipeline."""

    prompt: str
    model: str
    cost: float
    image_urls: list[str]
    status: ResultStatus = "completed"
    is_public: bool = True
    tags_used: list[TagUsage] = field(default_factory=list)
    original_urls: list[str] = field(default_factory=list)
    storage_keys: list[str | None] = field(default_factory=list)


@dataclass
class FeedbackRecord:
    """Feedback as stored by the feedback backend.

    ``feedback_type`` None means "remove any existing feedback".
    ``tags_used`` holds tag display names.
    """

    generation_id: str
    feedback_type: FeedbackType | None
    image_urls: list[str] = field(default_factory=list)
    tags_used: list[str] = field(default_factory=list)
    model_used: str = ""


def new_batch_id() -> str:
    """Batch ids are time-prefixed so they sort by creation."""
    return f"batch_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


def time_bucket(moment: datetime) -> str:
    """Coarse time bucket (same minute) used to group results into batches."""
    return moment.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M")


@dataclass
class GenerationBatch:
    """Results sharing prompt, model and minute bucket, fed back on as a unit.

    The aggregate feedback is read from the first result. ``committed_feedback``
    is the last state the feedback backend confirmed for this batch.
    ``generation_ids`` lists every stored record merged into a restored batch;
    ``persistence`` is the background task writing a new batch's record.
    """

    id: str
    prompt: str
    model: str
    config: GenerationConfig
    results: list[GenerationResult]
    created_at: datetime = field(default_factory=utcnow)
    real_generation_id: str | None = None
    tags_used: list[TagUsage] = field(default_factory=list)
    committed_feedback: FeedbackType | None = None
    generation_ids: list[str] = field(default_factory=list)
    persistence: asyncio.Future | None = field(default=None, repr=False, compare=False)

    @property
    def feedback_type(self) -> FeedbackType | None:
        if not self.results:
            return None
        return self.results[0].feedback_type

    @property
    def image_urls(self) -> list[str]:
        return [result.image_url for result in self.results]

    @property
    def record_ids(self) -> list[str]:
        """Ids of the stored records feedback on this batch is written to."""
        if self.generation_ids:
            return list(self.generation_ids)
        return [self.real_generation_id] if self.real_generation_id else []

    def image_urls_for(self, generation_id: str) -> list[str]:
        return [
            result.image_url
            for result in self.results
            if result.metadata.get("generation_id", generation_id) == generation_id
        ]

    def apply_feedback(self, feedback_type: FeedbackType | None) -> None:
        """Write ``feedback_type`` to every result of the batch."""
        submitted_at = utcnow() if feedback_type else None
        for result in self.results:
            result.feedback = Feedback(type=feedback_type, submitted_at=submitted_at)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "prompt": self.prompt,
            "model": self.model,
            "config": self.config.to_dict(),
            "created_at": self.created_at.isoformat(),
            "real_generation_id": self.real_generation_id,
            "feedback_type": self.feedback_type,
            "tags_used": [tag.to_dict() for tag in self.tags_used],
            "results": [result.to_dict() for result in self.results],
        }
