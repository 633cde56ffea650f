"""Markdown rendering for question prompts sent to participants.

Prompts are authored as plain spreadsheet text that may carry markdown and
``$...$`` math. The server renders them to HTML fragments; math is left in
place for MathJax on the participant page.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from markdown_it import MarkdownIt


@dataclass(slots=True)
class MarkdownMathRenderer:
    """Converts markdown-with-math into HTML fragments."""

    enable_html: bool = False
    _markdown: MarkdownIt = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._markdown = (
            MarkdownIt("commonmark", {"html": self.enable_html})
            .enable("table")
            .enable("strikethrough")
        )

    def render_fragment(self, markdown_text: str) -> str:
        """Render a markdown string into an HTML fragment."""

        sanitized = markdown_text.strip()
        if not sanitized:
            return "<p><em>No content provided.</em></p>"
        return self._markdown.render(sanitized)


# MarkdownIt is safe for concurrent read-only renders, so the API worker
# threads share this instance.
renderer = MarkdownMathRenderer()
