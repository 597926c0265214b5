"""Long-running Bastion modules."""

from .base_module import BaseModule
from .logon_guard import LogonGuard
