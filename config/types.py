"""Type definitions for agent prompt files."""

from pathlib import Path

from pydantic import BaseModel


class PromptConfig(BaseModel):
    """Agent prompt parsed from a Markdown file with YAML frontmatter."""

    name: str
    description: str = ""
    template: str = ""
    max_tool_iterations: int | None = None
    source_dir: Path | None = None

    def render(self, **values: str) -> str:
        return self.template.format(**values)
