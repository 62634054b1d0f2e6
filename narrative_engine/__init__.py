"""Narrative engine: turn-by-turn interactive story generation over an LLM."""
