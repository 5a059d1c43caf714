from .converter import ConversionController, ConversionJob
from .errors import ConversionError, ErrorCategory, classify_diagnostic
from .profiles import DEFAULT_PROFILES, ExtractionProfile, ProfileSelector
from .resolver import OutputResolver, ResolvedOutput
from .runtime import get_runtime_info
from .supervisor import AttemptOutcome, AttemptResult, SubprocessSupervisor
from .validation import ConversionRequest, sanitize_filename, validate_request
from .workspace import WorkspaceManager, new_job_id

__all__ = [
    "AttemptOutcome",
    "AttemptResult",
    "ConversionController",
    "ConversionError",
    "ConversionJob",
    "ConversionRequest",
    "DEFAULT_PROFILES",
    "ErrorCategory",
    "ExtractionProfile",
    "OutputResolver",
    "ProfileSelector",
    "ResolvedOutput",
    "SubprocessSupervisor",
    "WorkspaceManager",
    "classify_diagnostic",
    "get_runtime_info",
    "new_job_id",
    "sanitize_filename",
    "validate_request",
]
