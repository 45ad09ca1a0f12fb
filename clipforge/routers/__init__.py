"""
FastAPI routers for the clip assembly service.
"""

from clipforge.routers import clip_assembly, health, maintenance

__all__ = ["health", "clip_assembly", "maintenance"]
