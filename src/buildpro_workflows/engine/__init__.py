"""Workflow engine components.

- Settings loaded from the environment and `.env`
- Structured JSON logging
- Runtime wiring shared by the CLI and the server
- The workflow domain itself (`buildpro_workflows.engine.workflow`)
"""
