"""cookimport - OCR-driven cookbook index import.

Tracks the server-side OCR job started for a cookbook and drives the import
wizard whose review step depends on the job's results.
"""

__version__ = "0.1.0"

from cookimport.review import ConfirmedItem, ReviewableItem
from cookimport.wizard import FormData, ImportWizard, OperationKind, WizardState, WizardStep

__all__ = [
    "ConfirmedItem",
    "FormData",
    "ImportWizard",
    "OperationKind",
    "ReviewableItem",
    "WizardState",
    "WizardStep",
]
