"""Prompt context assembly, template rendering and rolling memory for fiction projects."""
