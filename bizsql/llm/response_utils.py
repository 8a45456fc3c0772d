"""
LLM response utilities for handling multi-format model outputs.

Supports both:
- Simple string responses (gpt-4o-mini, llama3, etc.)
- Structured content blocks with reasoning (o-series and similar)
"""

import re
from typing import Any

from loguru import logger

_CODE_BLOCK = re.compile(r"```(?:sql)?\s*\n(.*?)\n?```", re.DOTALL | re.IGNORECASE)


def extract_text_from_response(response: Any) -> str:
    """
    Extract text content from an LLM response (AIMessage, list of blocks, or str).

    Reasoning blocks are skipped; only text blocks are returned.
    """
    content = response.content if hasattr(response, "content") else response

    if not content:
        return ""

    if isinstance(content, str):
        return content

    if isinstance(content, list):
        text_parts = []
        for block in content:
            if isinstance(block, dict):
                if block.get("type") == "text" and "text" in block:
                    text_parts.append(block["text"])
                elif "text" in block and block.get("type") != "reasoning":
                    text_parts.append(block["text"])
            elif isinstance(block, str):
                text_parts.append(block)

        result = "".join(text_parts)
        if result:
            return result

        content_preview = str(content)[:200]
        logger.warning(f"No text blocks found in structured response: {content_preview}")
        return ""

    return str(content)


def extract_sql_from_markdown(text: str) -> str:
    """
    Extract SQL from a markdown code block anywhere in the text.

    Looks for ```sql or ``` code blocks and returns the content inside.
    If no code block is found, returns the stripped text.

    Examples:
        >>> extract_sql_from_markdown("Here is the query:\\n```sql\\nSELECT 1\\n```")
        'SELECT 1'
    """
    match = _CODE_BLOCK.search(text)
    if match:
        sql_content = match.group(1).strip()
        logger.debug(f"Extracted SQL from markdown code block ({len(sql_content)} chars)")
        return sql_content
    return text.strip()
