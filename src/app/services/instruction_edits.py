# src/app/services/instruction_edits.py
"""
Instruction rewriting for user edits.

When a user swaps, removes or rescales ingredients the steps have to follow.
The rewritten steps feed the edited recipe that is then saved as a fork.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Sequence

from src.app.domain.errors import GenerationEmptyError, InvalidInputError
from src.app.domain.models import TokenUsage
from src.app.schemas.recipes import Ingredient
from src.app.services.provider_chain import ProviderChain
from src.services.errors import MalformedOutputError
from src.services.json_utils import recover_json_object
from src.services.prompts import build_modification_prompt, build_scaling_prompt

logger = logging.getLogger(__name__)


@dataclass
class IngredientChange:
    """One substitution. replacement=None removes the ingredient."""
    name: str
    replacement: Optional[Ingredient] = None


@dataclass
class InstructionEdit:
    instructions: list[str]
    new_title: Optional[str] = None
    usage: TokenUsage = field(default_factory=TokenUsage)
    provider: Optional[str] = None


def _list_field(key: str) -> Callable[[str], Any]:
    def check(text: str) -> list:
        payload = recover_json_object(text)
        value = payload.get(key)
        if not isinstance(value, list):
            raise MalformedOutputError(f"response has no {key} array")
        return value

    return check


def _clean_steps(values: list, *, strings_only: bool) -> list[str]:
    steps = []
    for value in values:
        if strings_only and not isinstance(value, str):
            continue
        text = str(value).strip()
        if text:
            steps.append(text)
    return steps


class InstructionEditor:
    def __init__(self, chain: ProviderChain):
        self._chain = chain

    def rewrite(
        self,
        instructions: Sequence[str],
        changes: Sequence[IngredientChange],
        *,
        original_ingredients: Sequence[Ingredient] = (),
        scaled_ingredients: Sequence[Ingredient] = (),
        scaling_factor: float = 1.0,
        keep_title: bool = False,
    ) -> InstructionEdit:
        """
        Rewrite steps for substitutions and, optionally, a new scale.

        Returns the steps untouched without calling a provider when there is
        nothing to change. Raises InvalidInputError for an empty step list.
        """
        steps = [step for step in instructions if step and step.strip()]
        if not steps:
            raise InvalidInputError("There are no instructions to rewrite.")
        if scaling_factor <= 0:
            raise InvalidInputError("The scaling factor must be greater than zero.")

        changes = [change for change in changes if change.name and change.name.strip()]
        if not changes and scaling_factor == 1:
            logger.info("instructions.rewrite_skipped reason=no_changes steps=%d", len(steps))
            return InstructionEdit(instructions=steps)

        removed = [change.name for change in changes if change.replacement is None]
        logger.info(
            "instructions.rewrite_start steps=%d changes=%d removals=%s factor=%g",
            len(steps),
            len(changes),
            removed,
            scaling_factor,
        )
        prompt = build_modification_prompt(
            steps,
            [(change.name.strip(), change.replacement) for change in changes],
            list(original_ingredients),
            list(scaled_ingredients),
            scaling_factor,
            keep_title=keep_title,
        )
        outcome = self._chain.run(prompt, check=_list_field("modifiedInstructions"))
        payload = recover_json_object(outcome.output)

        rewritten = _clean_steps(payload["modifiedInstructions"], strings_only=True)
        if not rewritten:
            raise GenerationEmptyError("The rewritten instructions came back empty. Please try again.")

        new_title = payload.get("newTitle")
        new_title = new_title.strip() if isinstance(new_title, str) and new_title.strip() and not keep_title else None
        logger.info(
            "instructions.rewrite_done steps=%d new_title=%r provider=%s tokens=%d",
            len(rewritten),
            new_title,
            outcome.provider,
            outcome.usage.total_tokens,
        )
        return InstructionEdit(instructions=rewritten, new_title=new_title, usage=outcome.usage, provider=outcome.provider)

    def scale(
        self,
        instructions: Sequence[str],
        original_ingredients: Sequence[Ingredient],
        scaled_ingredients: Sequence[Ingredient],
    ) -> InstructionEdit:
        steps = [step for step in instructions if step and step.strip()]
        if not steps:
            return InstructionEdit(instructions=[])
        if len(original_ingredients) != len(scaled_ingredients):
            logger.warning(
                "instructions.scale_length_mismatch original=%d scaled=%d",
                len(original_ingredients),
                len(scaled_ingredients),
            )

        prompt = build_scaling_prompt(steps, list(original_ingredients), list(scaled_ingredients))
        outcome = self._chain.run(prompt, check=_list_field("scaledInstructions"))
        scaled = _clean_steps(recover_json_object(outcome.output)["scaledInstructions"], strings_only=False)
        if not scaled:
            raise GenerationEmptyError("The scaled instructions came back empty. Please try again.")

        logger.info("instructions.scale_done steps=%d provider=%s", len(scaled), outcome.provider)
        return InstructionEdit(instructions=scaled, usage=outcome.usage, provider=outcome.provider)
