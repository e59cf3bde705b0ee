"""FastAPI server adapter for buildpro-workflows.

Design intent:
- Keep business logic in `buildpro_workflows.engine.*`
- Keep server-specific concerns (routing, identity headers, HTTP error mapping, the
  background deadline sweep) here
"""

from __future__ import annotations

__all__ = ["create_app"]

from buildpro_workflows.server.app import create_app
