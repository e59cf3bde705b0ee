"""Console-script shim; the CLI lives in `buildpro_workflows.engine.main`."""

from __future__ import annotations

from buildpro_workflows.engine.main import main

__all__ = ["main"]


if __name__ == "__main__":
    raise SystemExit(main())
