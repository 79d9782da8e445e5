"""
Branch Directory Service
Read access to the list of branches used by the branch scope resolver
"""

import logging
import time

from sqlalchemy.exc import SQLAlchemyError

from bakery_pos.errors import BranchDirectoryError
from bakery_pos.models import db, Branch

logger = logging.getLogger(__name__)


class BranchDirectory:
    """
    Loads branches from the database.

    Reads are retried a bounded number of times before a
    BranchDirectoryError is raised, so callers always get either a
    list or an explicit failure.
    """

    def __init__(self, retries=2, retry_delay=0.1):
        self.retries = max(int(retries), 0)
        self.retry_delay = retry_delay

    def list_branches(self):
        """
        Get all branches ordered by creation.

        Returns:
            List of Branch objects (possibly empty)

        Raises:
            BranchDirectoryError: if every attempt failed
        """
        return self._with_retry(
            lambda: Branch.query.order_by(Branch.id).all(),
            'list branches'
        )

    def get_branch(self, branch_id):
        """Get a single branch or None"""
        if branch_id in (None, ''):
            return None
        try:
            branch_id = int(branch_id)
        except (TypeError, ValueError):
            return None
        return self._with_retry(lambda: db.session.get(Branch, branch_id), 'get branch')

    def _with_retry(self, operation, description):
        last_error = None
        for attempt in range(self.retries + 1):
            try:
                return operation()
            except SQLAlchemyError as e:
                db.session.rollback()
                last_error = e
                logger.warning(f"Branch directory: {description} failed "
                               f"(attempt {attempt + 1}/{self.retries + 1}): {e}")
                if attempt < self.retries and self.retry_delay:
                    time.sleep(self.retry_delay)

        raise BranchDirectoryError(f"Could not {description}: {last_error}")
