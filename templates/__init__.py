"""Notification templates — placeholder rendering and cached template lookup."""
from templates.renderer import render, placeholders, parse_payload
from templates.registry import TemplateService

__all__ = ["render", "placeholders", "parse_payload", "TemplateService"]
