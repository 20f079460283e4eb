"""Data model and result-shaping pipeline."""
