"""Concrete adapters for hnrank interfaces."""
