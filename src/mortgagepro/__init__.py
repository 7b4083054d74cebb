"""mortgagepro - Optimistic data layer for a mortgage brokerage CRM."""

from mortgagepro.activity import ActivityLogger, ActivityResult

# Backends
from mortgagepro.backends import (
    DataBackend,
    MemoryBackend,
    MemoryStorage,
    RestBackend,
    RestStorage,
    StorageBackend,
    TableQuery,
)
from mortgagepro.chat import ChatAssistant, ChatContext, resolve_context
from mortgagepro.config import Settings, get_settings
from mortgagepro.documents import DocumentUpload, LenderDocumentUpload, validate_upload

# Duration parsing
from mortgagepro.duration import parse_duration
from mortgagepro.errors import (
    AuthenticationError,
    BackendError,
    ChatError,
    MortgageProError,
    StorageError,
    ValidationError,
    describe_error,
)
from mortgagepro.feedback import Toast, Toaster
from mortgagepro.kanban import (
    LOAN_STATUS_COLUMNS,
    OPPORTUNITY_STAGE_COLUMNS,
    DragTarget,
    KanbanBoard,
)
from mortgagepro.keys import make_key
from mortgagepro.log import setup_logging

# Mutation API
from mortgagepro.mutation import (
    OptimisticListMutation,
    OptimisticMutation,
    create_list_mutation,
    create_optimistic_mutation,
)
from mortgagepro.person_entity import (
    ClientFields,
    CreationResult,
    LenderFields,
    PersonEntityCreator,
    PersonFields,
    RealtorFields,
)

# Query cache API
from mortgagepro.query_client import QueryClient

# Core types
from mortgagepro.types import (
    CacheKey,
    Duration,
    MutationContext,
    MutationStatus,
    QueryState,
    Session,
    Snapshot,
)
from mortgagepro.webhooks import WebhookNotifier

__version__ = "0.1.0"

__all__ = [
    "ActivityLogger",
    "ActivityResult",
    "AuthenticationError",
    "BackendError",
    "CacheKey",
    "ChatAssistant",
    "ChatContext",
    "ChatError",
    "ClientFields",
    "CreationResult",
    "DataBackend",
    "DocumentUpload",
    "DragTarget",
    "Duration",
    "KanbanBoard",
    "LOAN_STATUS_COLUMNS",
    "LenderDocumentUpload",
    "LenderFields",
    "MemoryBackend",
    "MemoryStorage",
    "MortgageProError",
    "MutationContext",
    "MutationStatus",
    "OPPORTUNITY_STAGE_COLUMNS",
    "OptimisticListMutation",
    "OptimisticMutation",
    "PersonEntityCreator",
    "PersonFields",
    "QueryClient",
    "QueryState",
    "RealtorFields",
    "RestBackend",
    "RestStorage",
    "Session",
    "Settings",
    "Snapshot",
    "StorageBackend",
    "StorageError",
    "TableQuery",
    "Toast",
    "Toaster",
    "ValidationError",
    "WebhookNotifier",
    "create_list_mutation",
    "create_optimistic_mutation",
    "describe_error",
    "get_settings",
    "make_key",
    "parse_duration",
    "resolve_context",
    "setup_logging",
    "validate_upload",
]
