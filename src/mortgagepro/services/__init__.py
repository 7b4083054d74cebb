"""Entity services: cached lists with optimistic add/update/delete."""

from mortgagepro.services.base import EntityService
from mortgagepro.services.clients import ClientsService
from mortgagepro.services.conversations import ConversationsService
from mortgagepro.services.documents import DocumentsService, LenderDocumentsService
from mortgagepro.services.lenders import LendersService
from mortgagepro.services.loans import LoansService
from mortgagepro.services.notes import NotesService
from mortgagepro.services.opportunities import OpportunitiesService
from mortgagepro.services.people import PeopleService
from mortgagepro.services.realtors import RealtorsService
from mortgagepro.services.todos import TodosService

__all__ = [
    "ClientsService",
    "ConversationsService",
    "DocumentsService",
    "EntityService",
    "LenderDocumentsService",
    "LendersService",
    "LoansService",
    "NotesService",
    "OpportunitiesService",
    "PeopleService",
    "RealtorsService",
    "TodosService",
]
