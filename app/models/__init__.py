from app.models.app_settings import AppSettings
from app.models.assignment_request import AssignmentRequest
from app.models.loan_application import LoanApplication
from app.models.user import User

__all__ = [
    "AppSettings",
    "AssignmentRequest",
    "LoanApplication",
    "User",
]
