"""Render worker integration.

- dispatcher: launches the external worker process and interprets its exit
- properties: the property bag schema passed to the worker
"""

from videogen.render.dispatcher import RenderDispatcher, RenderResult, build_dispatcher
from videogen.render.properties import RenderProperties

__all__ = ["RenderDispatcher", "RenderProperties", "RenderResult", "build_dispatcher"]
