"""Windows Firewall block-rule management."""

from .addresses import covers, subtract, validate_entry
from .backend import FirewallBackend, FirewallRuleState, PowerShellFirewallBackend
from .reconciler import FirewallReconciler
