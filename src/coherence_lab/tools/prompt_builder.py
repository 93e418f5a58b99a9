"""Assembly of the full generation prompt."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field

from coherence_lab.models import Annotation, RefinementConfig, Resource, StepConfig
from coherence_lab.prompts import render_template


@dataclass
class RefinementContext:
    """Predecessor content and feedback offered to a refinement pass."""

    original_text: str
    annotations: list[Annotation] = field(default_factory=list)
    config: RefinementConfig = field(default_factory=RefinementConfig)


class PromptBuilder:
    """Renders the full prompt sent to the generation oracle.

    Sections, in order: enabled resources, refinement feedback (each part
    behind its toggle), task instructions, and the step-by-step segment
    protocol when a step config is given.
    """

    template_name = "full_prompt.jinja2"

    def build_full_prompt(
        self,
        task_prompt: str,
        resources: Sequence[Resource],
        refinement: RefinementContext | None = None,
        step_config: StepConfig | None = None,
    ) -> str:
        original_text = None
        ai_notes: list[Annotation] = []
        human_notes: list[Annotation] = []

        if refinement is not None:
            active_ids = refinement.config.active_resource_ids
            if active_ids is None:
                active = [r for r in resources if r.enabled]
            else:
                active = [r for r in resources if r.id in active_ids]
            cfg = refinement.config
            if cfg.include_original_text:
                original_text = refinement.original_text
            if cfg.include_ai_annotations:
                ai_notes = [a for a in refinement.annotations if a.is_automated]
            if cfg.include_human_annotations:
                human_notes = [a for a in refinement.annotations if not a.is_automated]
        else:
            active = [r for r in resources if r.enabled]

        return render_template(
            self.template_name,
            resources=active,
            original_text=original_text,
            ai_notes=ai_notes,
            human_notes=human_notes,
            task_prompt=task_prompt,
            step_config=step_config,
        )
