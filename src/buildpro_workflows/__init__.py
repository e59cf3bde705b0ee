"""BuildPro approval workflows.

Configurable, multi-stage approval workflows for construction-project documents
(submittals, RFIs, change orders):
- template design with structural validation
- a versioned execution engine with an audit trail
- stage deadlines, task queues and analytics
- a REST adapter and a small operational CLI
"""

__version__ = "0.1.0"

from buildpro_workflows.engine.config import EngineSettings

__all__ = ["__version__", "EngineSettings"]
