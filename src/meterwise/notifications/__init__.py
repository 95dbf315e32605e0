"""Subscriber notifications."""
