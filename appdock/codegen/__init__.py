"""Code generation: declarative spec -> runnable FastAPI application."""

from appdock.codegen.generate import generate

__all__ = ["generate"]
