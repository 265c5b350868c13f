"""Plan, check and execute transactions along Safe/Zodiac account routes."""

from .addresses import (
    format_prefixed_address,
    parse_prefixed_address,
    split_prefixed_address,
    unprefix_address,
)
from .build import build_route
from .errors import (
    EmptyBatch,
    IncompatibleBatchTarget,
    InvalidConnection,
    InvalidDownstreamConnection,
    InvalidUpstreamConnection,
    MalformedRoute,
    MissingDefaultRole,
    MissingSignature,
    RouteError,
    RouteQueryError,
    RpcRequestError,
    SafeServiceError,
    UnknownChainPrefix,
    UnsupportedChain,
)
from .execute import execute
from .models import (
    AccountType,
    ConnectionType,
    ExecutionActionType,
    MetaTransaction,
    OperationType,
    Route,
    plan_from_json,
    plan_to_json,
)
from .multisend import encode_multi_send_batch
from .normalize import normalize_route
from .options import Options, SafeTransactionProperties
from .permissions import PermissionViolation, check_permissions, determine_role
from .plan import plan_execution
from .query import RouteQueryClient
from .rank import rank_routes
from .routes import (
    calculate_route_id,
    can_sign_off_chain,
    collapse_pass_through,
    use_default_roles_for_modules,
    validate_route,
)

__version__ = "0.1.0"
