from .attachments import AttachmentEvaluator
from .content import ContentScanner
from .fields import FieldWalker
from .media import MediaScanner
from .rules import ISSUE_LABELS, evaluate, issue_label

__all__ = [
    "AttachmentEvaluator",
    "ContentScanner",
    "FieldWalker",
    "ISSUE_LABELS",
    "MediaScanner",
    "evaluate",
    "issue_label",
]
