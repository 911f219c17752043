"""Captcha guard package."""
