"""
Branch scoping exceptions
Routes turn these into JSON responses through the handler registered in create_app
"""


class BranchScopeError(Exception):
    """Base class for branch scoping errors"""
    status_code = 500


class BranchDirectoryError(BranchScopeError):
    """Raised when the branch list cannot be loaded"""
    status_code = 503


class BranchSelectionError(BranchScopeError):
    """Raised when a branch switch is not allowed"""

    def __init__(self, message, status_code=403):
        super().__init__(message)
        self.status_code = status_code
