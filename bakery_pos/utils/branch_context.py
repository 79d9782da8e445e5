"""
Branch Context Utilities for Multi-Branch Support

This module decides which branch's data the signed-in user sees. It holds the
pure resolution rules, a small stateful resolver that publishes the resolved
scope, and the Flask glue (request hook, decorator and query filter) used by
the branch-scoped blueprints.
"""

import logging
from functools import wraps

from blinker import Namespace
from flask import current_app, g, session, jsonify
from flask_login import current_user
from sqlalchemy import false

from bakery_pos.errors import BranchDirectoryError, BranchScopeError, BranchSelectionError
from bakery_pos.models import Roles
from bakery_pos.services.branch_directory import BranchDirectory

logger = logging.getLogger(__name__)

_signals = Namespace()

#: Sent whenever the published scope changes.
#: Receivers get ``scope``, ``previous`` and ``reason`` keyword arguments.
branch_scope_changed = _signals.signal('branch-scope-changed')

SNAPSHOT_KEY = 'branch_scope'

_UNSET = object()


class ScopeStatus:
    """Why a scope looks the way it does"""
    LOADING = 'loading'
    READY = 'ready'
    NO_SESSION = 'no_session'
    UNASSIGNED = 'unassigned'
    NO_BRANCHES = 'no_branches'
    ERROR = 'error'


class SessionInfo:
    """What the resolver needs to know about the signed-in user"""

    def __init__(self, identity, role, assigned_branch_id=None):
        self.identity = identity
        self.role = role
        self.assigned_branch_id = assigned_branch_id

    @classmethod
    def from_user(cls, user):
        return cls(user.id, user.effective_role, user.branch_id)

    @property
    def can_switch_branch(self):
        return self.role in (Roles.ADMIN, Roles.OWNER)

    def to_dict(self):
        return {
            'identity': self.identity,
            'role': self.role,
            'assigned_branch_id': self.assigned_branch_id,
        }

    def __repr__(self):
        return f'<SessionInfo {self.identity} {self.role} branch={self.assigned_branch_id}>'


def _branch_id(branch):
    if branch is None:
        return None
    if isinstance(branch, dict):
        return branch.get('id')
    return branch.id


def _branch_dict(branch):
    if branch is None:
        return None
    if isinstance(branch, dict):
        return dict(branch)
    if hasattr(branch, 'to_dict'):
        return branch.to_dict()
    return {'id': branch.id, 'name': getattr(branch, 'name', None)}


def _is_blank(value):
    return value is None or value == ''


class BranchScope:
    """
    Resolved branch scope for one session.

    ``effective_branch_id`` is the id every branch-scoped query must use;
    ``None`` means "do not query".
    """

    def __init__(self, current_branch=None, effective_branch_id=None, user_branch_id=None,
                 status=ScopeStatus.LOADING, error=None, degraded=False):
        self.current_branch = current_branch
        self.effective_branch_id = effective_branch_id
        self.user_branch_id = user_branch_id
        self.status = status
        self.error = error
        self.degraded = degraded

    @classmethod
    def loading(cls):
        return cls(status=ScopeStatus.LOADING)

    @classmethod
    def from_snapshot(cls, data):
        """Rebuild a scope saved with to_snapshot(); anything unusable gives a loading scope"""
        if not isinstance(data, dict):
            return cls.loading()
        return cls(
            current_branch=data.get('current_branch'),
            effective_branch_id=data.get('effective_branch_id'),
            user_branch_id=data.get('user_branch_id'),
            status=data.get('status', ScopeStatus.LOADING),
            error=data.get('error'),
            degraded=bool(data.get('degraded', False)),
        )

    @property
    def loading_in_progress(self):
        return self.status == ScopeStatus.LOADING

    @property
    def has_branch(self):
        return self.effective_branch_id is not None

    def with_error(self, message):
        """Same branch fields, flagged as failed"""
        return BranchScope(self.current_branch, self.effective_branch_id, self.user_branch_id,
                           ScopeStatus.ERROR, message, self.degraded)

    def to_dict(self):
        return {
            'current_branch': _branch_dict(self.current_branch),
            'effective_branch_id': self.effective_branch_id,
            'user_branch_id': self.user_branch_id,
            'loading': self.loading_in_progress,
            'status': self.status,
            'error': self.error,
            'degraded': self.degraded,
        }

    def to_snapshot(self):
        data = self.to_dict()
        data.pop('loading')
        return data

    def __eq__(self, other):
        if not isinstance(other, BranchScope):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    __hash__ = None

    def __repr__(self):
        return f'<BranchScope {self.status} effective={self.effective_branch_id}>'


def resolve_branch_scope(session_info, branches, persisted_id, stale_fallback=True):
    """
    Work out the branch scope for a session.

    Args:
        session_info: SessionInfo or None when nobody is signed in
        branches: branches from the directory, in directory order
        persisted_id: last selected branch id from the selection store
        stale_fallback: whether an employee whose branch disappeared falls
            back to the first branch

    Returns:
        Tuple of (BranchScope, id_to_persist). ``id_to_persist`` is None when
        the persisted selection does not need to be written.
    """
    if session_info is None:
        return BranchScope(status=ScopeStatus.NO_SESSION), None

    branches = list(branches or [])
    by_id = {}
    for branch in branches:
        by_id.setdefault(str(_branch_id(branch)), branch)

    assigned = session_info.assigned_branch_id

    if not session_info.can_switch_branch:
        if _is_blank(assigned):
            return BranchScope(status=ScopeStatus.UNASSIGNED,
                               error='No branch assigned to this user'), None

        branch = by_id.get(str(assigned))
        if branch is not None:
            return BranchScope(branch, assigned, assigned, ScopeStatus.READY), _branch_id(branch)

        if not stale_fallback:
            return BranchScope(None, None, assigned, ScopeStatus.UNASSIGNED,
                               f'Assigned branch {assigned} no longer exists', degraded=True), None

        if branches:
            first = branches[0]
            return BranchScope(first, _branch_id(first), assigned, ScopeStatus.READY,
                               degraded=True), _branch_id(first)

        # Nothing to fall back to: keep the assignment so the user never sees another branch
        return BranchScope(None, assigned, assigned, ScopeStatus.READY, degraded=True), None

    user_branch_id = None if _is_blank(assigned) else assigned

    if not _is_blank(persisted_id) and str(persisted_id) in by_id:
        branch = by_id[str(persisted_id)]
        return BranchScope(branch, _branch_id(branch), user_branch_id, ScopeStatus.READY), None

    if branches:
        first = branches[0]
        return BranchScope(first, _branch_id(first), user_branch_id, ScopeStatus.READY), _branch_id(first)

    return BranchScope(None, None, user_branch_id, ScopeStatus.NO_BRANCHES,
                       'No branches have been registered'), None


class MemorySelectionStore:
    """Selection store kept in memory, for scripts and tests"""

    def __init__(self, value=None):
        self.value = value

    def get(self):
        return self.value

    def set(self, branch_id):
        self.value = None if branch_id is None else str(branch_id)

    def clear(self):
        self.value = None


class SessionSelectionStore:
    """Selection store backed by the signed Flask session cookie"""

    def __init__(self, key='current_branch_id'):
        self.key = key

    def get(self):
        return session.get(self.key)

    def set(self, branch_id):
        session[self.key] = None if branch_id is None else str(branch_id)

    def clear(self):
        session.pop(self.key, None)


class BranchResolver:
    """
    Owns the resolved scope and republishes it whenever an input changes.

    Inputs arrive separately (session, branch list, explicit selection).
    Until both the session and the branch list are known the previous scope
    is kept as is.
    """

    def __init__(self, store, directory=None, stale_fallback=True, scope=None):
        self.store = store
        self.directory = directory
        self.stale_fallback = stale_fallback
        self._session = _UNSET
        self._branches = None
        self._scope = scope if scope is not None else BranchScope.loading()

    @property
    def scope(self):
        return self._scope

    @property
    def branches(self):
        return list(self._branches or [])

    @property
    def session_info(self):
        return None if self._session is _UNSET else self._session

    def set_session(self, session_info):
        """Record the signed-in user (None after sign-out)"""
        self._session = session_info
        if session_info is None:
            self._branches = None
        return self._recompute()

    def set_branches(self, branches):
        self._branches = list(branches or [])
        return self._recompute()

    def refresh(self):
        """
        Reload the branch list from the directory and resolve again.

        A failed load keeps the current branch fields and marks the scope
        with status ``error``. An employee always keeps their assigned
        branch, whatever the previous scope held.
        """
        if self.directory is None:
            raise BranchScopeError('No branch directory configured')

        try:
            branches = self.directory.list_branches()
        except BranchDirectoryError as e:
            logger.error(f"Branch directory unavailable, keeping previous scope: {e}")
            self._publish(self._failure_scope(str(e)), 'error')
            return self._scope

        return self.set_branches(branches)

    def _failure_scope(self, message):
        session_info = self.session_info
        if session_info is None or session_info.can_switch_branch:
            return self._scope.with_error(message)

        assigned = session_info.assigned_branch_id
        if _is_blank(assigned):
            return BranchScope(status=ScopeStatus.ERROR, error=message)

        previous = self._scope
        current = previous.current_branch if str(previous.effective_branch_id) == str(assigned) else None
        return BranchScope(current, assigned, assigned, ScopeStatus.ERROR, message)

    def select_branch(self, branch):
        """
        Switch the active branch (admin and owner only).

        Raises:
            BranchSelectionError: not signed in, not allowed, or unknown branch
        """
        session_info = self.session_info
        if session_info is None:
            raise BranchSelectionError('Authentication required', 401)
        if not session_info.can_switch_branch:
            raise BranchSelectionError('Only administrators and owners can switch branches', 403)
        if branch is None:
            raise BranchSelectionError('Branch not found', 404)

        branch_id = _branch_id(branch)
        if self._branches is not None and str(branch_id) not in {str(_branch_id(b)) for b in self._branches}:
            raise BranchSelectionError('Branch not found', 404)

        self.store.set(branch_id)
        user_branch_id = None if _is_blank(session_info.assigned_branch_id) else session_info.assigned_branch_id
        logger.info(f"User {session_info.identity} switched to branch {branch_id}")
        self._publish(BranchScope(branch, branch_id, user_branch_id, ScopeStatus.READY), 'selected')
        return self._scope

    def _recompute(self):
        if self._session is _UNSET:
            return self._scope
        if self._session is not None and self._branches is None:
            return self._scope

        persisted_id = self.store.get()
        scope, persist_id = resolve_branch_scope(self._session, self._branches, persisted_id,
                                                 self.stale_fallback)

        if persist_id is not None and str(persist_id) != str(persisted_id):
            self.store.set(persist_id)

        if scope.degraded:
            logger.warning(f"Assigned branch {scope.user_branch_id} for user "
                           f"{self._session.identity} not found in directory "
                           f"(effective branch: {scope.effective_branch_id})")

        self._publish(scope, 'signed_out' if self._session is None else 'resolved')
        return self._scope

    def _publish(self, scope, reason):
        previous = self._scope
        self._scope = scope
        if scope != previous:
            branch_scope_changed.send(self, scope=scope, previous=previous, reason=reason)


# ============================================================================
# Flask integration
# ============================================================================

def _selection_store():
    return SessionSelectionStore(current_app.config.get('BRANCH_SESSION_KEY', 'current_branch_id'))


def branch_directory():
    """Branch directory configured for this application"""
    return BranchDirectory(retries=current_app.config.get('BRANCH_DIRECTORY_RETRIES', 2))


def _saved_scope(session_info):
    """
    Scope saved by an earlier request of the same user.

    The snapshot is only trusted when identity, role and assigned branch
    all match the current session; otherwise resolution starts from a
    loading scope with no branch.
    """
    snapshot = session.get(SNAPSHOT_KEY)
    if session_info is None or not isinstance(snapshot, dict):
        return BranchScope.loading()
    if snapshot.get('session') != session_info.to_dict():
        return BranchScope.loading()
    return BranchScope.from_snapshot(snapshot)


def get_branch_resolver(session_info=None):
    """Per-request resolver seeded with the scope saved in the session"""
    resolver = getattr(g, 'branch_resolver', None)
    if resolver is None:
        resolver = BranchResolver(
            store=_selection_store(),
            directory=branch_directory(),
            stale_fallback=current_app.config.get('BRANCH_STALE_FALLBACK', True),
            scope=_saved_scope(session_info),
        )
        g.branch_resolver = resolver
    return resolver


def _store_scope(resolver):
    scope = resolver.scope
    g.branch_scope = scope
    session_info = resolver.session_info
    if session_info is None:
        session.pop(SNAPSHOT_KEY, None)
        return

    snapshot = scope.to_snapshot()
    snapshot['session'] = session_info.to_dict()
    if session.get(SNAPSHOT_KEY) != snapshot:
        session[SNAPSHOT_KEY] = snapshot


def set_branch_context():
    """
    Resolve the branch scope into g.branch_scope.
    Call this in before_request so every view sees the same scope.
    """
    g.pop('branch_resolver', None)
    session_info = SessionInfo.from_user(current_user) if current_user.is_authenticated else None
    resolver = get_branch_resolver(session_info)
    resolver.set_session(session_info)
    if session_info is not None:
        resolver.refresh()
    _store_scope(resolver)
    return resolver.scope


def get_current_branch_scope():
    """Get the scope for this request, resolving it if the hook has not run"""
    scope = getattr(g, 'branch_scope', None)
    if scope is None:
        scope = set_branch_context()
    return scope


def get_effective_branch_id():
    return get_current_branch_scope().effective_branch_id


def select_branch(branch):
    """Switch the current user's active branch and save the choice"""
    if getattr(g, 'branch_scope', None) is None:
        set_branch_context()
    resolver = get_branch_resolver()
    scope = resolver.select_branch(branch)
    _store_scope(resolver)
    return scope


def clear_branch_selection():
    """Forget the persisted selection (used on sign-out)"""
    _selection_store().clear()
    session.pop(SNAPSHOT_KEY, None)
    g.pop('branch_resolver', None)
    g.branch_scope = BranchScope(status=ScopeStatus.NO_SESSION)


def branch_required(f):
    """
    Decorator to ensure the request has a branch to work on.

    Usage:
        @branch_required
        def my_view():
            # g.branch_scope.effective_branch_id is guaranteed to be set
            ...
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not current_user.is_authenticated:
            return jsonify({'error': 'Authentication required'}), 401

        scope = get_current_branch_scope()
        if scope.effective_branch_id is None:
            return jsonify({
                'error': scope.error or 'No branch selected',
                'status': scope.status
            }), 409

        return f(*args, **kwargs)
    return decorated_function


def filter_by_branch(query, model, branch_id=_UNSET, branch_field='branch_id'):
    """
    Filter a query to one branch.
    Without a branch the query matches nothing; it never widens to all branches.

    Args:
        query: SQLAlchemy query object
        model: The model class being queried
        branch_id: Branch to filter on, defaults to the current effective branch
        branch_field: Name of the branch_id field on the model

    Returns:
        Filtered query
    """
    if branch_id is _UNSET:
        branch_id = get_effective_branch_id()

    if branch_id is None:
        return query.filter(false())

    branch_column = getattr(model, branch_field)
    return query.filter(branch_column == branch_id)
