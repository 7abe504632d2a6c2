"""Agent harness — everything between the orchestrator and the agent process."""
from dad.harness.gate import AdmissionHandle, ConcurrencyGate, thread_key
from dad.harness.invoker import SessionedInvoker
from dad.harness.parser import parse_result
from dad.harness.respect import RespectOutcome, extract_respect, strip_respect_marker

__all__ = [
    "AdmissionHandle",
    "ConcurrencyGate",
    "RespectOutcome",
    "SessionedInvoker",
    "extract_respect",
    "parse_result",
    "strip_respect_marker",
    "thread_key",
]
