"""
Governance Service Dependency.

Provides a singleton instance of the GovernanceService for API endpoints.
"""

from typing import Annotated

from fastapi import Depends

from execguard_ai.governance.service import GovernanceService
from execguard_ai.server.services.governance import get_governance_service

GovernanceDep = Annotated[GovernanceService, Depends(get_governance_service)]
