"""Prompt construction for coloring page generation."""

from __future__ import annotations

_COLORING_PAGE_TEMPLATE = """Create a highly detailed, intricate black and white coloring page illustration for adults of: {subject}.
Style: Ultra-detailed line art with precise, clean outlines. Include intricate patterns, fine details, and realistic proportions.
No shading, no gradients, no filled solid areas - only outlines and patterns. Pure white background.
The design should fill the ENTIRE image edge-to-edge with no borders or margins.
Art style: Professional adult coloring book quality with zen-tangle inspired details and sophisticated artistic complexity.
Ultra high resolution."""


def build_coloring_page_prompt(subject: str) -> str:
  """Layer the line-art directives on top of the user's subject text."""
  cleaned = " ".join(subject.split())
  if not cleaned:
    raise ValueError("Prompt must not be empty")
  return _COLORING_PAGE_TEMPLATE.format(subject=cleaned)


def build_variation_prompt(subject: str, index: int, total: int) -> str:
  """Prompt for one image of a client-side batch of variations."""
  return f"{subject} (Variation {index + 1} of {total}, unique design)"
