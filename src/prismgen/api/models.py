"""Pydantic request models for the Prism API.

These models define the JSON schema of every request body. FastAPI uses
them for request validation and OpenAPI documentation. Only structural
checks happen here: bounds that depend on the selected model (steps, output
count, formats) are validated by the model's adapter.

Models
------
TagSelectionModel
    Structured tag choices sent alongside a prompt.
GenerateRequest
    Payload for ``POST /api/generate``, ``/api/validate`` and
    ``/api/estimate``.
FeedbackRequest
    Payload for ``POST /api/feedback``.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

from prismgen.core.models import GenerationConfig, TagSelection


class TagSelectionModel(BaseModel):
    """Tag selection: one value per single-choice category, lists otherwise.

    Attributes:
        art_style: Prompt value of the chosen art style.
        theme_style: Prompt value of the chosen theme.
        mood: Prompt value of the chosen mood.
        technical: Prompt values of the chosen technical tags.
        composition: Prompt values of the chosen composition tags.
        enhancement: Prompt values of the chosen enhancement tags.
        quality_enhanced: Append the fixed quality phrase.
    """

    art_style: str | None = Field(default=None, description="Art style prompt value.")
    theme_style: str | None = Field(default=None, description="Theme prompt value.")
    mood: str | None = Field(default=None, description="Mood prompt value.")
    technical: list[str] = Field(default_factory=list, description="Technical prompt values.")
    composition: list[str] = Field(
        default_factory=list, description="Composition prompt values."
    )
    enhancement: list[str] = Field(
        default_factory=list, description="Enhancement prompt values."
    )
    quality_enhanced: bool = Field(default=False, description="Append the quality phrase.")

    def to_selection(self) -> TagSelection:
        return TagSelection.from_dict(self.model_dump())


class GenerateRequest(BaseModel):
    """Request body for the generation endpoints.

    Attributes:
        prompt: Base prompt written by the user.
        model: Model id from ``GET /api/config``.  Defaults to the configured
            default model.
        aspect_ratio: One of ``1:1``, ``16:9``, ``9:16``, ``4:3``, ``3:4``.
        num_outputs: Number of images to generate.
        output_format: ``webp``, ``jpg`` or ``png``.
        num_inference_steps: Diffusion steps.  Defaults to the model's
            default step count.
        negative_prompt: Optional text describing what to avoid.
        seed: Random seed.  ``None`` lets the provider choose.
        selected_tags: Optional structured tag selection.
    """

    prompt: str = Field(..., description="Base prompt.")
    model: str | None = Field(default=None, description="Model id (default model when omitted).")
    aspect_ratio: str = Field(default="1:1", description="Aspect ratio, e.g. '16:9'.")
    num_outputs: int = Field(default=1, description="Number of images to generate.")
    output_format: str | None = Field(
        default=None, description="Output format (model default when omitted)."
    )
    num_inference_steps: int | None = Field(
        default=None, description="Inference steps (model default when omitted)."
    )
    negative_prompt: str | None = Field(default=None, description="Optional negative prompt.")
    seed: int | None = Field(default=None, description="Random seed.")
    selected_tags: TagSelectionModel | None = Field(
        default=None, description="Structured tag selection."
    )

    def to_config(
        self, default_model: str, model_defaults: dict | None = None
    ) -> GenerationConfig:
        """Build a :class:`GenerationConfig`, filling omitted values from model defaults.

        Args:
            default_model: Model used when the request names none.
            model_defaults: ``default_config`` of the resolved model.

        Returns:
            The generation config.
        """
        defaults = model_defaults or {}
        return GenerationConfig(
            prompt=self.prompt,
            model=self.model or default_model,
            aspect_ratio=self.aspect_ratio,
            num_outputs=self.num_outputs,
            output_format=self.output_format or defaults.get("output_format", "webp"),
            num_inference_steps=(
                self.num_inference_steps
                if self.num_inference_steps is not None
                else int(defaults.get("num_inference_steps", 4))
            ),
            negative_prompt=self.negative_prompt,
            seed=self.seed,
            selected_tags=self.selected_tags.to_selection() if self.selected_tags else None,
        )


class FeedbackRequest(BaseModel):
    """Request body for ``POST /api/feedback``.

    Attributes:
        batch_id: Session batch id from ``GET /api/history``.
        feedback_type: ``like`` or ``dislike``.  Sending the batch's current
            value toggles it off; ``None`` clears it.
    """

    batch_id: str = Field(..., description="Session batch id.")
    feedback_type: Literal["like", "dislike"] | None = Field(
        default=None, description="'like', 'dislike', or null to clear."
    )
