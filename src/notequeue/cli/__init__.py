"""Typer sub-applications for the notequeue CLI."""
