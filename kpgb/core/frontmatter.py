"""
YAML front matter for markdown post files.

    ---
    title: Hello World
    author: alice
    tags: [rust, ipfs]        # or "rust, ipfs"
    category: Technology
    published: true
    ---

    # Body starts here
"""

from typing import List, Optional, Tuple

import yaml
from pydantic import BaseModel, Field, field_validator

DELIMITER = "---"


class FrontMatter(BaseModel):
    title: str
    author: str
    slug: Optional[str] = None
    date: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    category: Optional[str] = None
    excerpt: Optional[str] = None
    published: Optional[bool] = None

    @field_validator("tags", mode="before")
    @classmethod
    def _split_tags(cls, value):
        if value is None:
            return []
        if isinstance(value, str):
            return [tag.strip() for tag in value.split(",") if tag.strip()]
        return [str(tag) for tag in value]

    @field_validator("date", mode="before")
    @classmethod
    def _date_to_str(cls, value):
        # YAML parses bare dates (2024-01-01) into date objects
        if value is None or isinstance(value, str):
            return value
        return str(value)


def parse_frontmatter(text: str) -> Tuple[Optional[FrontMatter], str]:
    """
    Split a markdown document into (front matter, body).

    Documents without a leading '---' return (None, text). Raises ValueError
    when the block is never closed or is not valid front matter.
    """
    text = text.lstrip()
    if not text.startswith(DELIMITER):
        return None, text

    lines = text.splitlines()
    for index, line in enumerate(lines[1:], start=1):
        if line.strip() == DELIMITER:
            header = "\n".join(lines[1:index])
            body = "\n".join(lines[index + 1 :]).strip()
            break
    else:
        raise ValueError("Unclosed frontmatter block")

    try:
        data = yaml.safe_load(header) or {}
    except yaml.YAMLError as e:
        raise ValueError(f"Failed to parse frontmatter: {e}") from e
    if not isinstance(data, dict):
        raise ValueError("Failed to parse frontmatter: expected a mapping")

    try:
        return FrontMatter.model_validate(data), body
    except ValueError as e:
        raise ValueError(f"Failed to parse frontmatter: {e}") from e
