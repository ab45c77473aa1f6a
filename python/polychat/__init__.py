"""Polychat: multi-model chat backend with resumable response streams."""
