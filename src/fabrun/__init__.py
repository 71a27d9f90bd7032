__version__ = "0.1.0"

from .config import load_config
from .dsl import matrix, project, sh, stage, step, uses, variants, when
from .errors import ConfigError, EvaluationError, ExecutionError, FabrunError, Terminated
from .model import Action, Config, OnError, Stage, StageResult, Step, StepResult, StepStatus, Variant
from .runner import Runner, RunOptions

__all__ = [
    "__version__",
    "load_config",
    "matrix",
    "project",
    "sh",
    "stage",
    "step",
    "uses",
    "variants",
    "when",
    "ConfigError",
    "EvaluationError",
    "ExecutionError",
    "FabrunError",
    "Terminated",
    "Action",
    "Config",
    "OnError",
    "Stage",
    "StageResult",
    "Step",
    "StepResult",
    "StepStatus",
    "Variant",
    "Runner",
    "RunOptions",
]
