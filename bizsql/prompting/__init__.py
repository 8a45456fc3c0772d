"""
Prompt assembly
"""

from bizsql.prompting.assembler import ContextAssembler, PromptContext, PromptSection

__all__ = ["ContextAssembler", "PromptContext", "PromptSection"]
