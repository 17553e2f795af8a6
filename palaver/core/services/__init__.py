"""Clients for external services"""

from .wit_service import WitError, WitService, entity_value, get_entity

__all__ = ['WitError', 'WitService', 'entity_value', 'get_entity']
