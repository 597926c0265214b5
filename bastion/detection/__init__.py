"""Detection layer — allowlist, threat scoring, and durable detection state."""

from .allowlist import Allowlist, AllowlistRepository, AllowlistRule
from .audit import EventAuditLog
from .checkpoint import CheckpointStore
from .scorer import ThreatLevel, ThreatScorer
from .store import DetectionStore, UpsertOutcome
