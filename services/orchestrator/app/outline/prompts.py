"""Prompt templates for chapter outline generation."""

from __future__ import annotations


OUTLINE_SYSTEM_PROMPT = """
You are a senior fiction editor who plans chapters scene by scene before any prose is written.
Always emit valid JSON that matches the provided schema. Scenes must follow one another in reading order,
each with a clear purpose, and together they must deliver everything the chapter summary promises.
""".strip()


OUTLINE_PROMPT = """
Plan the scenes for chapter {chapter_number} of {chapter_total} in the book "{book_title}".

Context:
- Genre: {genre}
- Chapter title: {chapter_title}
- Chapter summary: {chapter_summary}
- Previous chapter: {previous_chapter}
- Next chapter: {next_chapter}
- Target length for the whole book: {target_words}

Responsibilities:
1. Break the chapter into 3-7 scenes. Number them from 1 in reading order.
2. For every scene give a short title, the point-of-view character, the location, a target word count,
   a 2-4 sentence description, the key events as a list, and the emotional arc.
3. Use `section_type` "scene" for dramatised action and "summary" for bridging narration.
4. Do not write any prose for the scenes themselves.

Return JSON of the form {{"scenes": [...]}} matching the supplied schema. Do not include commentary outside the JSON payload.
""".strip()
