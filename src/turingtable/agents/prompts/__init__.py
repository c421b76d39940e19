"""Prompt templates for table participants."""

from .table_templates import TablePrompts

__all__ = ["TablePrompts"]
