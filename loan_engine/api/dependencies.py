"""
Shared dependencies for the API routers
"""

from ..config import get_config
from ..servicing import LoanServicer


# Global servicer instance; the engine is stateless so one is enough
loan_servicer = LoanServicer(get_config())


def get_servicer() -> LoanServicer:
    """Dependency returning the loan servicer"""
    return loan_servicer
