"""Prompt templates for scene prose."""

from __future__ import annotations


SCENE_SYSTEM_PROMPT = """
You are a novelist writing one scene of a longer book. Write finished prose only: no headings, no notes,
no summaries of what you are about to do. Keep voice, tense and point of view consistent with the prose
that precedes the scene and end at a natural handoff to the next scene.
""".strip()


SCENE_PROMPT = """
Write scene {scene_number} of {scene_total} in chapter "{chapter_title}" of the book "{book_title}".

Book genre: {genre}
Chapter summary: {chapter_summary}

Scene plan:
- Title: {scene_title}
- Point of view: {pov}
- Location: {location}
- Type: {section_type}
- What happens: {description}
- Key events: {key_events}
- Emotional arc: {emotional_arc}
- Target length: about {target_words} words

Next scene (do not write it, only lead into it): {next_scene}

The chapter so far ends with:
-- begin excerpt --
{previous_prose}
-- end excerpt --

Continue directly from the excerpt without repeating it.
""".strip()
