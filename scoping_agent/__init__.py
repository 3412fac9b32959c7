"""
Azure DevOps Scoping Agent - Collects migration scoping data for an organization.

This is a read-only tool for Azure DevOps -> GitHub migration planning.
No write operations are performed against the organization.
"""

__version__ = "0.1.0"

from .ado_client import AzureDevOpsClient, ConnectivityError, ScopingFatalError
from .orchestrator import ScopingOrchestrator, run_scan
from .schema import Report, validate_report

__all__ = [
    "AzureDevOpsClient",
    "ConnectivityError",
    "ScopingFatalError",
    "ScopingOrchestrator",
    "Report",
    "run_scan",
    "validate_report",
    "__version__",
]
