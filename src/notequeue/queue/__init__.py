"""Embedding task queue service and bulk operation helpers."""
