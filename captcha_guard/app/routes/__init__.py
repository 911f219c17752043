"""Router modules exposed by the captcha guard API."""
from . import captcha

__all__ = ["captcha"]
