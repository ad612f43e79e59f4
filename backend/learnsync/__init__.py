"""Thinkific to Ortto learner sync service."""
